# core/__init__.py

"""
Core Configuration and Utilities Package

Provides application-wide configuration and exception handling:
- Environment-based configuration management (per-upstream quotas, timeouts, TTLs)
- Custom exceptions separating upstream failures from caller bugs
"""

from .config import settings, Settings, UpstreamConfig
from .exceptions import (
    HealthbotException,
    ExternalAPIError,
    ResponseParseError,
    ValidationError,
    ConfigurationError,
    SessionNotFoundError
)

__all__ = [
    "settings",
    "Settings",
    "UpstreamConfig",
    "HealthbotException",
    "ExternalAPIError",
    "ResponseParseError",
    "ValidationError",
    "ConfigurationError",
    "SessionNotFoundError"
]
