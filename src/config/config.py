"""Ingestion pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection and consumer settings
- Relational store (SQLAlchemy async URL and pool sizing)
- Redis dead-letter sink
- Processing policy and observability ports

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

VALID_TIMESTAMP_POLICIES = ("fallback", "fail")


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


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

# Consumer settings applied unless overridden in kafka.consumer
CONSUMER_DEFAULTS: Dict[str, Any] = {
    "auto_offset_reset": "earliest",
    "max_poll_records": 100,
    "max_poll_interval_ms": 300000,
    "session_timeout_ms": 30000,
    "heartbeat_interval_ms": 3000,
}


@dataclass
class IngestConfig:
    """Event ingestion configuration.

    Configuration structure:
        kafka:
          connection: {...}     # Broker address and security
          consumer: {...}       # Topic, group and aiokafka consumer settings
        database: {...}         # SQLAlchemy async URL and pool
        redis: {...}            # Dead-letter sink connection
        dlq: {...}              # Dead-letter key layout and dedupe
        processing: {...}       # Timestamp policy, stats interval
        observability: {...}    # Metrics and health ports
        logging: {...}

    All Kafka timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # KAFKA CONNECTION
    # =========================================================================
    bootstrap_servers: str = "localhost:9092"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000  # 2 minutes
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    # =========================================================================
    # CONSUMER
    # =========================================================================
    topic: str = "events"
    group_id: str = "consumer-group"
    consumer: Dict[str, Any] = field(default_factory=dict)
    partition_queue_size: int = 500

    # =========================================================================
    # RELATIONAL STORE
    # =========================================================================
    database_url: str = ""
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    db_echo: bool = False

    # =========================================================================
    # DEAD-LETTER SINK
    # =========================================================================
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0
    redis_connect_timeout_seconds: float = 5.0
    dlq_key_prefix: str = "dlq"
    dlq_dedupe_by_event_id: bool = False
    dlq_dedupe_ttl_seconds: int = 7 * 24 * 3600

    # =========================================================================
    # PROCESSING
    # =========================================================================
    timestamp_policy: str = "fallback"
    stats_interval_seconds: int = 30

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    metrics_port: int = 8081
    health_port: int = 8080
    log_dir: str = "logs"

    domain: str = "ingest"
    worker_name: str = "event-ingester"

    def get_consumer_config(self) -> Dict[str, Any]:
        """Consumer settings merged over CONSUMER_DEFAULTS."""
        result = CONSUMER_DEFAULTS.copy()
        result.update(self.consumer)
        return result

    def redacted_database_url(self) -> str:
        return re.sub(r"(://[^:/@]*:)[^@]*@", r"\1***@", self.database_url)

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks required fields, Kafka timeout constraints, and numeric ranges.
        """
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")
        if not self.topic:
            raise ValueError("topic is required in kafka.consumer section")
        if not self.group_id:
            raise ValueError("group_id is required in kafka.consumer section")
        if not self.database_url:
            raise ValueError("url is required in database section")
        if not self.redis_url:
            raise ValueError("url is required in redis section")

        if self.timestamp_policy not in VALID_TIMESTAMP_POLICIES:
            raise ValueError(
                f"processing: timestamp_policy must be one of {list(VALID_TIMESTAMP_POLICIES)}, "
                f"got '{self.timestamp_policy}'"
            )

        self._validate_consumer_settings(self.get_consumer_config(), "kafka.consumer")

        numeric = {
            "partition_queue_size": self.partition_queue_size,
            "db_pool_size": self.db_pool_size,
            "stats_interval_seconds": self.stats_interval_seconds,
            "dlq_dedupe_ttl_seconds": self.dlq_dedupe_ttl_seconds,
        }
        for key in numeric:
            self._validate_min(numeric, key, 1, inclusive=True, context="config")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f}). "
                    f"Recommended: heartbeat_interval_ms <= {session_timeout // 3}"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ValueError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# aiokafka consumer keys whose values must be integers after env expansion
_INT_CONSUMER_KEYS = (
    "max_poll_records",
    "max_poll_interval_ms",
    "session_timeout_ms",
    "heartbeat_interval_ms",
    "fetch_min_bytes",
    "fetch_max_wait_ms",
)


def _build_config(data: Dict[str, Any]) -> IngestConfig:
    kafka = data.get("kafka", {})
    connection = kafka.get("connection", {})
    consumer = dict(kafka.get("consumer", {}))
    database = data.get("database", {})
    redis = data.get("redis", {})
    dlq = data.get("dlq", {})
    processing = data.get("processing", {})
    observability = data.get("observability", {})
    logging_section = data.get("logging", {})

    defaults = IngestConfig()

    topic = consumer.pop("topic", defaults.topic)
    group_id = consumer.pop("group_id", defaults.group_id)
    partition_queue_size = consumer.pop("partition_queue_size", defaults.partition_queue_size)
    for key in _INT_CONSUMER_KEYS:
        if key in consumer:
            consumer[key] = _as_int(consumer[key], f"kafka.consumer.{key}")

    return IngestConfig(
        bootstrap_servers=connection.get("bootstrap_servers", defaults.bootstrap_servers),
        security_protocol=connection.get("security_protocol", defaults.security_protocol),
        sasl_mechanism=connection.get("sasl_mechanism", defaults.sasl_mechanism),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=_as_int(
            connection.get("request_timeout_ms", defaults.request_timeout_ms),
            "kafka.connection.request_timeout_ms",
        ),
        metadata_max_age_ms=_as_int(
            connection.get("metadata_max_age_ms", defaults.metadata_max_age_ms),
            "kafka.connection.metadata_max_age_ms",
        ),
        connections_max_idle_ms=_as_int(
            connection.get("connections_max_idle_ms", defaults.connections_max_idle_ms),
            "kafka.connection.connections_max_idle_ms",
        ),
        topic=topic,
        group_id=group_id,
        consumer=consumer,
        partition_queue_size=_as_int(partition_queue_size, "kafka.consumer.partition_queue_size"),
        database_url=database.get("url", ""),
        db_pool_size=_as_int(database.get("pool_size", defaults.db_pool_size), "database.pool_size"),
        db_max_overflow=_as_int(
            database.get("max_overflow", defaults.db_max_overflow), "database.max_overflow"
        ),
        db_pool_timeout=_as_int(
            database.get("pool_timeout", defaults.db_pool_timeout), "database.pool_timeout"
        ),
        db_pool_recycle=_as_int(
            database.get("pool_recycle", defaults.db_pool_recycle), "database.pool_recycle"
        ),
        db_echo=_as_bool(database.get("echo", False)),
        redis_url=redis.get("url", defaults.redis_url),
        redis_socket_timeout=float(redis.get("socket_timeout", defaults.redis_socket_timeout)),
        redis_connect_timeout_seconds=float(
            redis.get("connect_timeout_seconds", defaults.redis_connect_timeout_seconds)
        ),
        dlq_key_prefix=dlq.get("key_prefix", defaults.dlq_key_prefix),
        dlq_dedupe_by_event_id=_as_bool(dlq.get("dedupe_by_event_id", False)),
        dlq_dedupe_ttl_seconds=_as_int(
            dlq.get("dedupe_ttl_seconds", defaults.dlq_dedupe_ttl_seconds),
            "dlq.dedupe_ttl_seconds",
        ),
        timestamp_policy=str(processing.get("timestamp_policy", defaults.timestamp_policy)).lower(),
        stats_interval_seconds=_as_int(
            processing.get("stats_interval_seconds", defaults.stats_interval_seconds),
            "processing.stats_interval_seconds",
        ),
        metrics_port=_as_int(
            observability.get("metrics_port", defaults.metrics_port), "observability.metrics_port"
        ),
        health_port=_as_int(
            observability.get("health_port", defaults.health_port), "observability.health_port"
        ),
        log_dir=logging_section.get("log_dir", defaults.log_dir),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> IngestConfig:
    """Load ingestion configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    Overrides are deep-merged over the file contents before validation.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)
    yaml_data = _expand_env_vars(yaml_data)

    if "kafka" not in yaml_data:
        raise ValueError("Invalid config file: missing 'kafka:' section")

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, overrides)

    config = _build_config(yaml_data)

    logger.debug(
        "Configuration loaded",
        extra={
            "topics": [config.topic],
            "group_id": config.group_id,
            "database_url": config.database_url,
            "redis_url": config.redis_url,
        },
    )

    config.validate()
    return config


_config: Optional[IngestConfig] = None


def get_config() -> IngestConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: IngestConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _config
    _config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Ingestion Pipeline Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show expanded configuration
  python -m config.config --show-merged

  # Use custom config file, JSON output for automation
  python -m config.config --config /path/to/config.yaml --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and completeness",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display configuration with environment variables expanded",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}

    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("✓ Configuration validation passed")
            print(f"  - Topic: {config.topic} (group {config.group_id})")
            print(f"  - Database: {config.redacted_database_url()}")
            print(f"  - Timestamp policy: {config.timestamp_policy}")

    if args.show_merged:
        config_dict = _expand_env_vars(load_yaml(args.config or DEFAULT_CONFIG_FILE))
        if args.json:
            output["merged_config"] = config_dict
        else:
            print("\nConfiguration:")
            print("=" * 80)
            print(yaml.dump(config_dict, default_flow_style=False, sort_keys=False))
            print("=" * 80)

    if args.json:
        print(json.dumps(output, indent=2))

    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
