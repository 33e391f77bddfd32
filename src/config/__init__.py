"""Configuration loading for the ingestion pipeline.

Configuration is loaded from a single YAML file (config/config.yaml by
default) with ${VAR} / ${VAR:-default} environment expansion.

Usage:
    >>> from config import load_config, get_config
    >>>
    >>> config = load_config()
    >>> config.topic, config.group_id
    ('events', 'consumer-group')

Settings are resolved in the following priority (highest to lowest):

1. Overrides passed to load_config()
2. Environment variables referenced from the YAML file
3. YAML values
4. Dataclass defaults
"""

from config.config import (
    IngestConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "IngestConfig",
]
