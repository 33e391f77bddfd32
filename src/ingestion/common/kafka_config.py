"""Shared Kafka security configuration builder."""

import ssl

from config.config import IngestConfig

SUPPORTED_SASL_MECHANISMS = ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512")


def build_kafka_security_config(config: IngestConfig) -> dict:
    """Build aiokafka security kwargs from IngestConfig.

    Handles PLAIN and SCRAM SASL mechanisms and SSL context creation.
    Returns an empty dict for PLAINTEXT connections.
    """
    if config.security_protocol == "PLAINTEXT":
        return {}

    security_config: dict = {"security_protocol": config.security_protocol}

    if "SSL" in config.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if config.security_protocol.startswith("SASL"):
        if config.sasl_mechanism not in SUPPORTED_SASL_MECHANISMS:
            raise ValueError(
                f"Unsupported sasl_mechanism '{config.sasl_mechanism}', "
                f"expected one of {list(SUPPORTED_SASL_MECHANISMS)}"
            )
        security_config["sasl_mechanism"] = config.sasl_mechanism
        security_config["sasl_plain_username"] = config.sasl_plain_username
        security_config["sasl_plain_password"] = config.sasl_plain_password

    return security_config
