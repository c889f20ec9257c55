"""Configuration loading for the order pipeline.

Configuration is read from a single YAML file (``config/config.yaml`` by
default) with ``${VAR}`` / ``${VAR:-default}`` environment expansion.

Usage Examples
--------------

    >>> from config import load_config, get_config
    >>>
    >>> config = load_config()
    >>> config.input_topics
    ['orders', 'orders-retry']
    >>> config.max_retries
    3

Configuration Priority
----------------------

1. Explicit overrides passed to load_config()
2. Environment variables (KAFKA_BOOTSTRAP_SERVERS, ORDERS_MAX_RETRIES, ORDERS_RETRY_DELAY_MS)
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    PipelineConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "PipelineConfig",
]
