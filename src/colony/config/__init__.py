"""Configuration management module."""

from .loader import ColonyConfig, find_config_file, load_config, save_config

__all__ = ["ColonyConfig", "load_config", "save_config", "find_config_file"]
