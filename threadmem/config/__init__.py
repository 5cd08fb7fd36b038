"""Configuration module for threadmem."""

from threadmem.config.loader import get_config_path, load_config
from threadmem.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
