# =============================================================================
# services/__init__.py
# =============================================================================
"""
Healthbot Services Package
- cache/: shared TTL cache for upstream responses
- medical_apis/: upstream clients, term extraction, aggregation, scoring
- session/: conversation session storage
"""

from .cache import CacheManager
from .session import SessionStorage
from .medical_apis import MedicalAggregator, build_aggregator

__all__ = [
    "CacheManager",
    "SessionStorage",
    "MedicalAggregator",
    "build_aggregator"
]
