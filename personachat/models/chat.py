"""Chat turn model: one persisted message."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from personachat.database import Base

SENDERS = ("user", "bot")


def _utcnow() -> datetime:
    # Naive UTC so SQLite round-trips it unchanged.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatTurn(Base):
    __tablename__ = "chats"
    __table_args__ = (Index("ix_chats_session_timestamp", "session_id", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    sender: Mapped[str] = mapped_column(String(8), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ChatTurn id={self.id} session={self.session_id!r} sender={self.sender}>"
