"""FastAPI router aggregation."""

from fastapi import APIRouter

from personachat.api.chat import router as chat_router
from personachat.api.health import router as health_router

api_router = APIRouter(prefix="/api")
api_router.include_router(chat_router, tags=["chat"])

__all__ = ["api_router", "health_router"]
