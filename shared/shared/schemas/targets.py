"""Delivery targets the Discord bot can see: text channels and guild roles."""

from __future__ import annotations

from pydantic import BaseModel


class ChannelTarget(BaseModel):
    id: str
    name: str
    guild: str
    guild_id: str


class RoleTarget(BaseModel):
    id: str
    name: str
    color: str  # "#rrggbb"
