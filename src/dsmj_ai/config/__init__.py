"""
Configuration module for dsmj-ai.
"""

from .loader import load_config
from .schema import (
    CatalogConfig,
    LoggingConfig,
    PathsConfig,
    SourceConfig,
    ToolkitConfig,
)

__all__ = [
    "load_config",
    "CatalogConfig",
    "LoggingConfig",
    "PathsConfig",
    "SourceConfig",
    "ToolkitConfig",
]
