"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository, apply_env_overrides
from .models import (
    ApiConfig,
    ExportersConfig,
    GlobalConfig,
    JobsConfig,
    RateLimitConfig,
    ScrapingConfig,
    SourceConfig,
)

__all__ = [
    "ApiConfig",
    "ConfigLocator",
    "ConfigRepository",
    "ExportersConfig",
    "GlobalConfig",
    "JobsConfig",
    "RateLimitConfig",
    "ScrapingConfig",
    "SourceConfig",
    "apply_env_overrides",
]
