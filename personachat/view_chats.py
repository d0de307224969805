"""Print stored chat sessions and their turns.

    personachat-chats                  # every session, most recent first
    personachat-chats --session 1739…  # a single session
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, TextIO

from sqlalchemy.orm import Session

from personachat.config import get_settings
from personachat.errors import ChatError
from personachat.services.message_store import MessageStore

logger = logging.getLogger(__name__)


def dump_chats(
    store: MessageStore,
    out: TextIO,
    *,
    session_id: str | None = None,
    bot_label: str = "Bot",
    user_label: str = "User",
) -> tuple[int, int]:
    """Write sessions to ``out``; returns (sessions shown, total stored messages)."""
    sessions = [session_id] if session_id else store.list_sessions()

    out.write("\nChat Sessions:\n")
    for sid in sessions:
        out.write(f"\nSession ID: {sid}\n")
        out.write("-" * 40 + "\n")
        for turn in store.list_by_session(sid):
            label = user_label if turn.sender == "user" else bot_label
            out.write(f"{turn.timestamp:%Y-%m-%d %H:%M:%S} {label}:\n{turn.content}\n\n")

    total = store.count_all()
    out.write("\nSummary:\n")
    out.write(f"Total Sessions: {len(sessions)}\n")
    out.write(f"Total Messages: {total}\n")
    return len(sessions), total


def _persona_labels() -> tuple[str, str]:
    from personachat.persona import load_persona

    persona = load_persona(get_settings().persona_path)
    return persona.user_name, persona.name


def main(argv: list[str] | None = None, session_factory: Callable[[], Session] | None = None) -> int:
    parser = argparse.ArgumentParser(description="View stored chat sessions.")
    parser.add_argument("--session", help="only show this session id")
    args = parser.parse_args(argv)

    from personachat.logging_config import setup_logging
    setup_logging("CLI")

    if session_factory is None:
        from personachat.database import SessionLocal, init_db
        init_db()
        session_factory = SessionLocal

    try:
        user_label, bot_label = _persona_labels()
    except ChatError:
        logger.warning("Persona unavailable, using generic labels")
        user_label, bot_label = "User", "Bot"

    try:
        dump_chats(
            MessageStore(session_factory),
            sys.stdout,
            session_id=args.session,
            bot_label=bot_label,
            user_label=user_label,
        )
    except ChatError as e:
        logger.error("Failed to read chats: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
