"""Configuration module for droidgram."""

from droidgram.config.loader import load_config, get_config_path
from droidgram.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
