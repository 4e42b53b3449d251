# =============================================================================
# services/session/storage.py
# =============================================================================

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionStorage:
    """
    Per-session conversation history, trimmed to the most recent messages
    In-memory only; one instance is owned by the application lifespan.
    """

    def __init__(self, history_limit: int = 10):
        if history_limit <= 0:
            raise ValueError("history_limit must be positive")
        self.history_limit = history_limit
        self.sessions: Dict[str, Dict] = {}

    async def append_exchange(self, session_id: str, user_message: str, analysis: Dict) -> int:
        """Record one user message and its analysis summary; returns the history length"""
        now = datetime.now().isoformat()
        session = self.sessions.setdefault(session_id, {"created_at": now, "history": []})

        history: List[Dict] = session["history"]
        history.append({"role": "user", "content": user_message, "timestamp": now})
        history.append({"role": "analysis", "content": analysis, "timestamp": now})
        if len(history) > self.history_limit:
            del history[:len(history) - self.history_limit]

        session["last_activity"] = now
        logger.info(f"💾 Stored exchange for session {session_id} ({len(history)} messages)")
        return len(history)

    async def get_history(self, session_id: str) -> List[Dict]:
        return list(self._session(session_id)["history"])

    async def get_context(self, session_id: str, recent: int = 4) -> Dict:
        """Summary of a session with its most recent messages"""
        session = self._session(session_id)
        history = session["history"]
        return {
            "session_id": session_id,
            "message_count": len(history),
            "last_messages": history[-recent:],
            "summary": f"{len(history) // 2} exchanges",
            "created_at": session["created_at"],
            "last_activity": session.get("last_activity")
        }

    async def delete_session_data(self, session_id: str):
        self._session(session_id)
        del self.sessions[session_id]
        logger.info(f"🗑️ Deleted session {session_id}")

    async def get_all_sessions(self) -> Dict:
        """Session counts (for health and admin views)"""
        return {
            "total_sessions": len(self.sessions),
            "active_sessions": len([s for s in self.sessions.values()
                                    if self._is_recent_activity(s.get("last_activity"))])
        }

    def _session(self, session_id: str) -> Dict:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _is_recent_activity(self, last_activity: Optional[str], hours: int = 24) -> bool:
        if not last_activity:
            return False
        try:
            last_time = datetime.fromisoformat(last_activity)
        except ValueError:
            return False
        return datetime.now() - last_time < timedelta(hours=hours)
