"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import EndpointConfig, GlobalConfig, RateLimitConfig, SizingConfig

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "EndpointConfig",
    "GlobalConfig",
    "RateLimitConfig",
    "SizingConfig",
]
