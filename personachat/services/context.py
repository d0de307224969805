"""Read-only context retrieval over stored chat turns.

Context is an enrichment, not a correctness requirement: every query here
absorbs database failures and degrades to an empty (or ``None``) result so
that a broken read path never fails a chat turn.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from personachat.models.chat import ChatTurn

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 10
DEFAULT_SEARCH_LIMIT = 5


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContextRetriever:
    """Bounded, chronologically ordered views of a session's history."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ):
        self.session_factory = session_factory
        self.search_limit = search_limit

    def recent_context(self, session_id: str, limit: int = DEFAULT_CONTEXT_LIMIT) -> list[ChatTurn]:
        """Last ``limit`` turns of a session, oldest first."""
        if limit <= 0:
            return []
        stmt = (
            select(ChatTurn)
            .where(ChatTurn.session_id == session_id)
            .order_by(ChatTurn.timestamp.desc(), ChatTurn.id.desc())
            .limit(limit)
        )
        try:
            with self.session_factory() as db:
                turns = list(db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            logger.warning("Error retrieving context for session %s: %s", session_id, exc)
            return []
        turns.reverse()
        return turns

    def search(self, session_id: str, query: str) -> list[ChatTurn]:
        """Case-insensitive substring search, newest first."""
        if not query:
            return []
        stmt = (
            select(ChatTurn)
            .where(
                ChatTurn.session_id == session_id,
                ChatTurn.content.ilike(f"%{_escape_like(query)}%", escape="\\"),
            )
            .order_by(ChatTurn.timestamp.desc(), ChatTurn.id.desc())
            .limit(self.search_limit)
        )
        try:
            with self.session_factory() as db:
                return list(db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            logger.warning("Error searching session %s: %s", session_id, exc)
            return []

    def stats(self, session_id: str) -> dict[str, Any] | None:
        """Aggregate counts for a session, or None when the query fails."""
        stmt = select(
            func.count(ChatTurn.id),
            func.sum(case((ChatTurn.sender == "user", 1), else_=0)),
            func.sum(case((ChatTurn.sender == "bot", 1), else_=0)),
            func.min(ChatTurn.timestamp),
            func.max(ChatTurn.timestamp),
        ).where(ChatTurn.session_id == session_id)
        try:
            with self.session_factory() as db:
                total, user_msgs, bot_msgs, first_ts, last_ts = db.execute(stmt).one()
        except SQLAlchemyError as exc:
            logger.warning("Error getting conversation stats for session %s: %s", session_id, exc)
            return None

        return {
            "session_id": session_id,
            "total_messages": total or 0,
            "user_messages": user_msgs or 0,
            "bot_messages": bot_msgs or 0,
            "first_timestamp": first_ts,
            "last_timestamp": last_ts,
        }
