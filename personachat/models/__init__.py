"""ORM models."""

from personachat.models.chat import ChatTurn, SENDERS

__all__ = ["ChatTurn", "SENDERS"]
