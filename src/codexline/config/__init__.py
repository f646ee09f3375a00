"""Configuration models and parser for codexline.yaml."""

from codexline.config.models import (
    ClientOptions,
    CodexlineConfig,
    ThreadOptions,
    TurnOptions,
)
from codexline.config.parser import ConfigError, load_config

__all__ = [
    "ClientOptions",
    "CodexlineConfig",
    "ConfigError",
    "ThreadOptions",
    "TurnOptions",
    "load_config",
]
