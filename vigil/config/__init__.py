"""Configuration loading, validation, and defaults."""

from vigil.config.loader import load_config
from vigil.config.schema import VigilConfig

__all__ = ["load_config", "VigilConfig"]
