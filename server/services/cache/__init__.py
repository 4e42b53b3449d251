# =============================================================================
# services/cache/__init__.py
# =============================================================================

"""
Shared TTL cache used by every upstream medical API client
"""

from .manager import CacheManager, CacheEntry

__all__ = ["CacheManager", "CacheEntry"]
