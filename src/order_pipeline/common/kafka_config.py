"""Shared Kafka security configuration builder."""

import ssl

from config.config import PipelineConfig


def build_kafka_security_config(config: PipelineConfig) -> dict:
    """Build aiokafka security kwargs from PipelineConfig.

    Handles PLAIN and SCRAM SASL mechanisms and SSL context creation.
    Returns an empty dict for PLAINTEXT connections.
    """
    if config.security_protocol == "PLAINTEXT":
        return {}

    security_config = {"security_protocol": config.security_protocol}

    if "SSL" in config.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if config.security_protocol.startswith("SASL"):
        security_config["sasl_mechanism"] = config.sasl_mechanism
        if config.sasl_mechanism in ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"):
            security_config["sasl_plain_username"] = config.sasl_plain_username
            security_config["sasl_plain_password"] = config.sasl_plain_password

    return security_config
