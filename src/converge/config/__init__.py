"""Configuration management."""

from .models import (
    ProjectConfig,
    ResourceEntry,
    RetrySettings,
    Settings,
    WaitSettings,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "ProjectConfig",
    "ResourceEntry",
    "RetrySettings",
    "Settings",
    "WaitSettings",
    "Config",
    "ConfigValidationError",
]
