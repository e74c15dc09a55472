"""Configuration module for plughost."""

from plughost.config.loader import get_config_path, get_data_dir, load_config, save_config
from plughost.config.schema import Config

__all__ = ["Config", "get_config_path", "get_data_dir", "load_config", "save_config"]
