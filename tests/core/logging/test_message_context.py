"""Tests for message transport logging context."""

import pytest

from core.logging.message_context import MessageLogContext, get_message_context


class TestMessageLogContext:

    def test_empty_outside_a_context(self):
        assert get_message_context() == {}

    def test_exposes_all_fields(self):
        with MessageLogContext(topic="orders", partition=0, offset=5, key="o-1", consumer_group="g"):
            assert get_message_context() == {
                "message_topic": "orders",
                "message_partition": 0,
                "message_offset": 5,
                "message_key": "o-1",
                "message_consumer_group": "g",
            }

    def test_key_without_topic(self):
        with MessageLogContext(key="o-1"):
            assert get_message_context() == {"message_key": "o-1"}

    def test_inner_context_restores_outer_values_on_exit(self):
        with MessageLogContext(topic="orders", partition=0, offset=1):
            with MessageLogContext(topic="orders-retry", offset=2, key="o-1"):
                assert get_message_context()["message_topic"] == "orders-retry"
                assert get_message_context()["message_offset"] == 2

            assert get_message_context() == {
                "message_topic": "orders",
                "message_partition": 0,
                "message_offset": 1,
            }

    def test_nested_contexts_unwind(self):
        with MessageLogContext(topic="orders", key="a"):
            with MessageLogContext(key="b"):
                assert get_message_context()["message_key"] == "b"
            assert get_message_context()["message_key"] == "a"

        assert get_message_context() == {}

    def test_restores_on_exception(self):
        with pytest.raises(RuntimeError), MessageLogContext(topic="orders"):
            raise RuntimeError("boom")

        assert get_message_context() == {}
