"""Append-only persistence of chat turns."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from personachat.errors import PersistenceError, ValidationError
from personachat.models.chat import SENDERS, ChatTurn

logger = logging.getLogger(__name__)


class MessageStore:
    """Repository for chat turn operations.

    Every call opens its own session from ``session_factory`` and commits
    before returning, so reads always see the last committed write. There is
    no in-memory cache.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def append(self, session_id: str, sender: str, content: str) -> int:
        """Insert one turn and return its id."""
        if sender not in SENDERS:
            raise ValidationError(f"Unknown sender {sender!r}; expected one of {SENDERS}")
        if not content or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if not session_id:
            raise ValidationError("Session id is required")

        with self.session_factory() as db:
            turn = ChatTurn(session_id=session_id, sender=sender, content=content)
            try:
                db.add(turn)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Failed to save %s turn for session %s: %s", sender, session_id, exc)
                raise PersistenceError(f"Failed to save message: {exc}") from exc
            logger.debug("Saved %s turn %d for session %s", sender, turn.id, session_id)
            return turn.id

    def list_by_session(self, session_id: str) -> list[ChatTurn]:
        """All turns for a session, oldest first. Unknown sessions yield []."""
        stmt = (
            select(ChatTurn)
            .where(ChatTurn.session_id == session_id)
            .order_by(ChatTurn.timestamp.asc(), ChatTurn.id.asc())
        )
        with self.session_factory() as db:
            try:
                return list(db.execute(stmt).scalars().all())
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to load messages: {exc}") from exc

    def list_sessions(self) -> list[str]:
        """Distinct session ids, most recently active first."""
        stmt = (
            select(ChatTurn.session_id)
            .group_by(ChatTurn.session_id)
            .order_by(func.max(ChatTurn.timestamp).desc(), func.max(ChatTurn.id).desc())
        )
        with self.session_factory() as db:
            try:
                return list(db.execute(stmt).scalars().all())
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to list sessions: {exc}") from exc

    def clear_session(self, session_id: str) -> int:
        """Delete every turn of a session. Idempotent; returns rows removed."""
        with self.session_factory() as db:
            try:
                result = db.execute(delete(ChatTurn).where(ChatTurn.session_id == session_id))
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to clear session: {exc}") from exc
        deleted = result.rowcount or 0
        logger.info("Cleared session %s (%d turns)", session_id, deleted)
        return deleted

    def count_all(self) -> int:
        """Total number of stored turns across all sessions."""
        with self.session_factory() as db:
            try:
                return db.execute(select(func.count(ChatTurn.id))).scalar() or 0
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to count messages: {exc}") from exc
