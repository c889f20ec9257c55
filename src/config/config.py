"""Order pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Broker connection settings
- Consumer and producer tuning
- Topic names (primary, retry, dead-letter)
- Retry/escalation policy
- Processing step settings

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BACKOFF_MODES = ("blocking", "scheduled")

# aiokafka consumer settings applied when the YAML omits them
DEFAULT_MAX_POLL_RECORDS = 50
DEFAULT_MAX_POLL_INTERVAL_MS = 300000


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


# Default config file: config/config.yaml next to this module
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"


@dataclass
class PipelineConfig:
    """Order pipeline configuration.

    Configuration structure:
        kafka:
          connection: {...}   # Broker connection settings
          consumer: {...}     # Consumer group and tuning
          producer: {...}     # Producer tuning
          topics: {...}       # orders / retry / dlq topic names
          retry: {...}        # Escalation policy
          processing: {...}   # Processing step and stats logging

    All timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # CONNECTION SETTINGS
    # =========================================================================
    bootstrap_servers: str = "localhost:9092"
    client_id: str = "order-processing-system"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 40000
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    # =========================================================================
    # CONSUMER / PRODUCER SETTINGS
    # =========================================================================
    group_id: str = "order-consumer-group"
    consumer_settings: Dict[str, Any] = field(default_factory=dict)
    producer_settings: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # TOPICS
    # =========================================================================
    orders_topic: str = "orders"
    retry_topic: str = "orders-retry"
    dlq_topic: str = "orders-dlq"

    # =========================================================================
    # RETRY / ESCALATION
    # =========================================================================
    max_retries: int = 3
    retry_delay_ms: int = 2000
    backoff_mode: str = "blocking"  # "blocking" or "scheduled"
    dead_letter_decode_errors: bool = False

    # =========================================================================
    # PROCESSING
    # =========================================================================
    failure_rate: float = 0.1
    seed: Optional[int] = None
    stats_interval_seconds: int = 30

    @property
    def input_topics(self) -> List[str]:
        """Topics the consumer subscribes to: primary first, then retry."""
        return [self.orders_topic, self.retry_topic]

    def get_consumer_settings(self) -> Dict[str, Any]:
        return dict(self.consumer_settings)

    def get_producer_settings(self) -> Dict[str, Any]:
        return dict(self.producer_settings)

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        if not self.bootstrap_servers:
            raise ConfigurationError("bootstrap_servers is required in kafka.connection section")
        if not self.group_id:
            raise ConfigurationError("group_id is required in kafka.consumer section")

        topics = [self.orders_topic, self.retry_topic, self.dlq_topic]
        if not all(topics):
            raise ConfigurationError("topics.orders, topics.retry and topics.dlq must all be set")
        if len(set(topics)) != len(topics):
            raise ConfigurationError(f"topics must be distinct, got {topics}")

        if self.max_retries < 0:
            raise ConfigurationError(f"retry.max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ConfigurationError(f"retry.retry_delay_ms must be >= 0, got {self.retry_delay_ms}")
        if self.backoff_mode not in BACKOFF_MODES:
            raise ConfigurationError(
                f"retry.backoff_mode must be one of {list(BACKOFF_MODES)}, got '{self.backoff_mode}'"
            )

        if not (0.0 <= self.failure_rate <= 1.0):
            raise ConfigurationError(
                f"processing.failure_rate must be between 0 and 1, got {self.failure_rate}"
            )
        if self.stats_interval_seconds <= 0:
            raise ConfigurationError(
                f"processing.stats_interval_seconds must be > 0, got {self.stats_interval_seconds}"
            )

        self._validate_enum(
            {"security_protocol": self.security_protocol},
            "security_protocol",
            ["PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"],
            "kafka.connection",
        )
        self._validate_consumer_settings(self.consumer_settings, "kafka.consumer")
        self._validate_producer_settings(self.producer_settings, "kafka.producer")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str,
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ConfigurationError(
                f"{context}: {key} must be one of {valid_values}, got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        context: str,
    ) -> None:
        """Validate that a setting's value is >= min_value."""
        if key in settings and settings[key] < min_value:
            raise ConfigurationError(
                f"{context}: {key} must be >= {min_value}, got {settings[key]}"
            )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ConfigurationError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f})"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ConfigurationError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        self._validate_min(settings, "max_poll_records", 1, context)

        # The blocking backoff sleeps inside the poll loop, once per record of a fetched batch
        if self.backoff_mode == "blocking":
            max_poll_records = settings.get("max_poll_records", DEFAULT_MAX_POLL_RECORDS)
            max_poll_interval = settings.get("max_poll_interval_ms", DEFAULT_MAX_POLL_INTERVAL_MS)
            worst_case_ms = max_poll_records * self.retry_delay_ms
            if worst_case_ms >= max_poll_interval:
                raise ConfigurationError(
                    f"{context}: max_poll_interval_ms ({max_poll_interval}) must exceed "
                    f"max_poll_records ({max_poll_records}) x retry.retry_delay_ms "
                    f"({self.retry_delay_ms}) = {worst_case_ms} when backoff_mode is 'blocking'"
                )

        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "linger_ms", 0, context)
        self._validate_min(settings, "retry_backoff_ms", 0, context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


_ENV_OVERRIDES = {
    "KAFKA_BOOTSTRAP_SERVERS": ("connection", "bootstrap_servers"),
    "ORDERS_MAX_RETRIES": ("retry", "max_retries"),
    "ORDERS_RETRY_DELAY_MS": ("retry", "retry_delay_ms"),
}


def _env_overrides() -> Dict[str, Any]:
    """Build an overlay dict from the supported environment variables."""
    overlay: Dict[str, Any] = {}
    for env_var, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            overlay.setdefault(section, {})[key] = value
    return overlay


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineConfig:
    """Load pipeline configuration from config.yaml.

    Priority (highest to lowest): explicit overrides, environment variables
    (KAFKA_BOOTSTRAP_SERVERS, ORDERS_MAX_RETRIES, ORDERS_RETRY_DELAY_MS),
    YAML values, dataclass defaults.

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigurationError: If the file is malformed or values are invalid
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "kafka" not in yaml_data:
        raise ConfigurationError(
            "Invalid config file: missing 'kafka:' section\n"
            "See src/config/config.yaml for correct structure"
        )

    kafka_config = _deep_merge(yaml_data["kafka"] or {}, _env_overrides())

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        kafka_config = _deep_merge(kafka_config, overrides)

    connection = kafka_config.get("connection", {})
    consumer = dict(kafka_config.get("consumer", {}))
    producer = dict(kafka_config.get("producer", {}))
    topics = kafka_config.get("topics", {})
    retry = kafka_config.get("retry", {})
    processing = kafka_config.get("processing", {})

    defaults = PipelineConfig()
    group_id = consumer.pop("group_id", defaults.group_id)

    try:
        config = PipelineConfig(
            bootstrap_servers=connection.get("bootstrap_servers", defaults.bootstrap_servers),
            client_id=connection.get("client_id", defaults.client_id),
            security_protocol=connection.get("security_protocol", defaults.security_protocol),
            sasl_mechanism=connection.get("sasl_mechanism", defaults.sasl_mechanism),
            sasl_plain_username=connection.get("sasl_plain_username", ""),
            sasl_plain_password=connection.get("sasl_plain_password", ""),
            request_timeout_ms=int(connection.get("request_timeout_ms", defaults.request_timeout_ms)),
            metadata_max_age_ms=int(connection.get("metadata_max_age_ms", defaults.metadata_max_age_ms)),
            connections_max_idle_ms=int(
                connection.get("connections_max_idle_ms", defaults.connections_max_idle_ms)
            ),
            group_id=group_id,
            consumer_settings=consumer,
            producer_settings=producer,
            orders_topic=topics.get("orders", defaults.orders_topic),
            retry_topic=topics.get("retry", defaults.retry_topic),
            dlq_topic=topics.get("dlq", defaults.dlq_topic),
            max_retries=int(retry.get("max_retries", defaults.max_retries)),
            retry_delay_ms=int(retry.get("retry_delay_ms", defaults.retry_delay_ms)),
            backoff_mode=retry.get("backoff_mode", defaults.backoff_mode),
            dead_letter_decode_errors=_as_bool(retry.get("dead_letter_decode_errors", False)),
            failure_rate=float(processing.get("failure_rate", defaults.failure_rate)),
            seed=_optional_int(processing.get("seed")),
            stats_interval_seconds=int(
                processing.get("stats_interval_seconds", defaults.stats_interval_seconds)
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in {config_path}: {e}", cause=e) from e

    logger.debug(
        "Configuration loaded",
        extra={"topics": config.input_topics, "max_retries": config.max_retries},
    )

    config.validate()
    return config


_pipeline_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """Get or load the singleton pipeline config instance."""
    global _pipeline_config
    if _pipeline_config is None:
        _pipeline_config = load_config()
    return _pipeline_config


def set_config(config: PipelineConfig) -> None:
    """Set the singleton pipeline config instance (useful for testing)."""
    global _pipeline_config
    _pipeline_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _pipeline_config
    _pipeline_config = None


def _redacted(config: PipelineConfig) -> Dict[str, Any]:
    data = asdict(config)
    if data.get("sasl_plain_password"):
        data["sasl_plain_password"] = "***"
    return data


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Order pipeline configuration tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show effective configuration
  python -m config.config --show

  # Use a custom config file and JSON output
  python -m config.config --config /path/to/config.yaml --show --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show", action="store_true", help="Display effective configuration")
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON instead of YAML")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        if args.json:
            print(json.dumps({"validation": {"passed": False, "error": str(e)}}, indent=2))
        else:
            print(f"Configuration invalid: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        output["validation"] = {"passed": True}
    if args.show:
        output["config"] = _redacted(config)

    if args.json:
        print(json.dumps(output, indent=2))
    else:
        if args.validate:
            print("Configuration is valid")
        if args.show:
            print(yaml.safe_dump(output["config"], sort_keys=False))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
