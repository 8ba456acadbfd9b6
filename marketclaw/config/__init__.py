"""Configuration module for marketclaw."""

from marketclaw.config.loader import get_config_path, load_config
from marketclaw.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
