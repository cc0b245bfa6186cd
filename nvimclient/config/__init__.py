"""Configuration module for nvimclient."""

from nvimclient.config.loader import get_config_path, load_config
from nvimclient.config.schema import SessionConfig

__all__ = ["SessionConfig", "load_config", "get_config_path"]
