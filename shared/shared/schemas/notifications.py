"""Notification schemas for reminder deliveries via Redis pub/sub."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class EmbedField(BaseModel):
    name: str
    value: str
    inline: bool = False


class Notification(BaseModel):
    """A rendered reminder message to send to a platform channel."""

    platform: str = "discord"
    platform_channel_id: str  # where to send the message
    platform_server_id: str | None = None
    kind: str = "main"  # "main" | "pre_warning"
    mention: str | None = None  # sent as message content so the role is pinged
    title: str
    content: str  # embed description, placeholders already resolved
    color: int
    footer: str | None = None
    fields: list[EmbedField] = Field(default_factory=list)
    timestamp: datetime | None = None
    reminder_id: int | None = None  # reminder that triggered this
    event_time: datetime | None = None  # logical fire instant the message refers to
