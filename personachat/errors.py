"""Error taxonomy shared by the store, the conversation manager and the HTTP layer."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for every error raised by personachat."""


class PersistenceError(ChatError):
    """The message store is unavailable or a write failed."""


class ConfigurationError(ChatError):
    """Persona or credential misconfiguration; fatal at startup."""


class GenerationError(ChatError):
    """The external generation call failed, timed out or was rejected."""


class ValidationError(ChatError):
    """An inbound message or turn is empty or malformed."""
