"""Tests for the command line entry point."""

from unittest.mock import AsyncMock, patch

from config.config import PipelineConfig
from core.errors.exceptions import ConfigurationError
from order_pipeline.__main__ import build_overrides, main, parse_args


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])

        assert args.config is None
        assert args.metrics_port == 8000
        assert args.log_level == "INFO"
        assert args.max_retries is None

    def test_build_overrides_only_includes_given_flags(self):
        args = parse_args(["--max-retries", "5", "--seed", "7"])
        assert build_overrides(args) == {"retry": {"max_retries": 5}, "processing": {"seed": 7}}

    def test_build_overrides_all_flags(self):
        args = parse_args(
            ["--max-retries", "1", "--retry-delay-ms", "10", "--failure-rate", "0.5", "--seed", "2"]
        )
        assert build_overrides(args) == {
            "retry": {"max_retries": 1, "retry_delay_ms": 10},
            "processing": {"failure_rate": 0.5, "seed": 2},
        }

    def test_no_flags_no_overrides(self):
        assert build_overrides(parse_args([])) == {}


class TestMain:

    def test_configuration_error_exits_with_code_2(self):
        with (
            patch("order_pipeline.__main__._setup_logging"),
            patch("order_pipeline.__main__.load_config", side_effect=ConfigurationError("bad")),
        ):
            assert main(["--metrics-port", "0"]) == 2

    def test_runs_worker_with_loaded_config(self):
        config = PipelineConfig(max_retries=1)

        with (
            patch("order_pipeline.__main__._setup_logging"),
            patch("order_pipeline.__main__.load_config", return_value=config) as mock_load,
            patch("order_pipeline.__main__.OrderWorker") as mock_worker,
            patch("order_pipeline.__main__.run_worker", new=AsyncMock()) as mock_run,
        ):
            assert main(["--metrics-port", "0", "--max-retries", "1"]) == 0

        assert mock_load.call_args.kwargs["overrides"] == {"retry": {"max_retries": 1}}
        mock_worker.assert_called_once_with(config)
        mock_run.assert_awaited_once_with(mock_worker.return_value)

    def test_fatal_error_exits_with_code_1(self):
        with (
            patch("order_pipeline.__main__._setup_logging"),
            patch("order_pipeline.__main__.load_config", return_value=PipelineConfig()),
            patch("order_pipeline.__main__.OrderWorker"),
            patch("order_pipeline.__main__.run_worker", new=AsyncMock(side_effect=RuntimeError("boom"))),
        ):
            assert main(["--metrics-port", "0"]) == 1
