"""Redis cache of the Discord bot's delivery targets.

The bot owns the gateway connection, so it publishes the text channels
and roles it can see; the scheduler API reads them back to serve the
channel and role pickers.  Entries expire, so a bot that has gone away
reads as "not connected" once its last snapshot lapses.
"""

from __future__ import annotations

import json

import structlog

from shared.schemas.targets import ChannelTarget, RoleTarget

logger = structlog.get_logger()

CHANNELS_KEY = "discord:targets:channels"
ROLES_KEY_PREFIX = "discord:targets:roles:"
DEFAULT_TTL = 900  # seconds; the bot refreshes well inside this


def _roles_key(guild_id: str) -> str:
    return f"{ROLES_KEY_PREFIX}{guild_id}"


class TargetCache:
    """Redis-backed target snapshot; read errors count as a miss."""

    def __init__(self, redis_client, ttl: int = DEFAULT_TTL):
        self._redis = redis_client
        self.ttl = ttl

    async def _get(self, key: str) -> list | None:
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            logger.warning("target_cache_get_error", key=key, error=str(e))
            return None

    async def _set(self, key: str, value: list) -> None:
        try:
            await self._redis.set(key, json.dumps(value), ex=self.ttl)
            logger.debug("target_cache_set", key=key, count=len(value))
        except Exception as e:
            logger.warning("target_cache_set_error", key=key, error=str(e))

    async def get_channels(self) -> list[ChannelTarget] | None:
        """Text channels across all guilds, or None when no snapshot is cached."""
        data = await self._get(CHANNELS_KEY)
        if data is None:
            return None
        return [ChannelTarget.model_validate(c) for c in data]

    async def get_roles(self, guild_id: str) -> list[RoleTarget] | None:
        """Roles of one guild, or None when the guild is unknown."""
        data = await self._get(_roles_key(guild_id))
        if data is None:
            return None
        return [RoleTarget.model_validate(r) for r in data]

    async def set_channels(self, channels: list[ChannelTarget]) -> None:
        await self._set(CHANNELS_KEY, [c.model_dump() for c in channels])

    async def set_roles(self, guild_id: str, roles: list[RoleTarget]) -> None:
        await self._set(_roles_key(guild_id), [r.model_dump() for r in roles])

    async def clear_roles(self, guild_id: str) -> None:
        key = _roles_key(guild_id)
        try:
            await self._redis.delete(key)
        except Exception as e:
            logger.warning("target_cache_delete_error", key=key, error=str(e))
