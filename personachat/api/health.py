"""Health check endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from personachat.api.deps import get_message_store
from personachat.errors import PersistenceError
from personachat.services.message_store import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(store: MessageStore = Depends(get_message_store)) -> dict:
    """Basic health check including database reachability."""
    try:
        store.count_all()
        database = True
    except PersistenceError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = False
    return {"status": "ok" if database else "degraded", "database": database}
