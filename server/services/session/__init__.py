# =============================================================================
# services/session/__init__.py
# =============================================================================

"""
Conversation session storage for the analyze endpoint
"""

from .storage import SessionStorage

__all__ = ["SessionStorage"]
