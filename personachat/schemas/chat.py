"""Pydantic request/response schemas for the chat endpoints.

Wire names are camelCase (``sessionId``); Python code uses snake_case.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ChatIn(BaseModel):
    message: str = ""


class ChatOut(_CamelModel):
    message: str
    timestamp: str
    session_id: str = Field(alias="sessionId")


class ChatTurnOut(_CamelModel):
    id: int
    session_id: str = Field(alias="sessionId")
    sender: str
    content: str
    timestamp: datetime


class ConversationStatsOut(_CamelModel):
    session_id: str = Field(alias="sessionId")
    total_messages: int = Field(alias="totalMessages")
    user_messages: int = Field(alias="userMessages")
    bot_messages: int = Field(alias="botMessages")
    first_timestamp: datetime | None = Field(default=None, alias="firstTimestamp")
    last_timestamp: datetime | None = Field(default=None, alias="lastTimestamp")


class ClearSessionOut(_CamelModel):
    status: str
    session_id: str = Field(alias="sessionId")
    deleted: int
