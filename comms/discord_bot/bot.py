"""Discord bot implementation."""

from __future__ import annotations

import asyncio

import discord
import httpx
import redis.asyncio as aioredis
import structlog
from discord import Intents, app_commands

from comms.discord_bot.normalizer import DiscordNormalizer
from shared.auth import get_service_auth_headers
from shared.config import Settings
from shared.schemas.notifications import Notification
from shared.schemas.targets import ChannelTarget, RoleTarget
from shared.target_cache import TargetCache

logger = structlog.get_logger()

TARGET_REFRESH_SECONDS = 300


class SchedulerApiClient:
    """Thin client for the scheduler admin API."""

    def __init__(self, base_url: str, timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def list_reminders(self, channel_id: str) -> list[dict]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                f"{self.base_url}/api/reminders",
                params={"channel_id": channel_id},
                headers=get_service_auth_headers(),
            )
            resp.raise_for_status()
            return resp.json()

    async def get_reminder(self, reminder_id: int) -> dict | None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                f"{self.base_url}/api/reminders/{reminder_id}",
                headers=get_service_auth_headers(),
            )
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()

    async def delete_reminder(self, reminder_id: int) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.delete(
                f"{self.base_url}/api/reminders/{reminder_id}",
                headers=get_service_auth_headers(),
            )
            resp.raise_for_status()


class ReminderCommands(app_commands.Group):
    """``/reminder`` slash commands, restricted to administrators."""

    def __init__(self, api: SchedulerApiClient, normalizer: DiscordNormalizer):
        super().__init__(
            name="reminder",
            description="Manage reminders",
            default_permissions=discord.Permissions(administrator=True),
            guild_only=True,
        )
        self.api = api
        self.normalizer = normalizer

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        permissions = getattr(interaction.user, "guild_permissions", None)
        if permissions is None or not permissions.administrator:
            await interaction.response.send_message(
                "❌ You need Administrator permissions to use this command",
                ephemeral=True,
            )
            return False
        return True

    async def on_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        logger.error("discord_command_failed", command=getattr(interaction.command, "name", None), error=str(error))
        if not interaction.response.is_done():
            await interaction.response.send_message("❌ An error occurred", ephemeral=True)

    @app_commands.command(name="list", description="List reminders in this channel")
    async def list_reminders(self, interaction: discord.Interaction):
        reminders = await self.api.list_reminders(str(interaction.channel_id))
        if not reminders:
            await interaction.response.send_message(
                "No reminders in this channel. Use the admin API to create one!",
                ephemeral=True,
            )
            return
        await interaction.response.send_message(embed=self.normalizer.reminder_list_embed(reminders))

    @app_commands.command(name="stop", description="Stop and delete a reminder")
    @app_commands.rename(reminder_id="id")
    @app_commands.describe(reminder_id="Reminder ID")
    async def stop(self, interaction: discord.Interaction, reminder_id: int):
        reminder = await self.api.get_reminder(reminder_id)
        if reminder is None or reminder["target"]["channel_id"] != str(interaction.channel_id):
            await interaction.response.send_message("Reminder not found in this channel", ephemeral=True)
            return
        await self.api.delete_reminder(reminder_id)
        logger.info("discord_reminder_stopped", reminder_id=reminder_id, user=str(interaction.user))
        await interaction.response.send_message(f"✅ Reminder #{reminder_id} stopped!")


class ReminderDiscordBot(discord.Client):
    """Discord bot that delivers reminder notifications published by the scheduler."""

    def __init__(self, settings: Settings):
        intents = Intents.default()
        super().__init__(intents=intents)

        self.settings = settings
        self.normalizer = DiscordNormalizer()
        self.api = SchedulerApiClient(settings.scheduler_url)
        self.tree = app_commands.CommandTree(self)
        self.tree.add_command(ReminderCommands(self.api, self.normalizer))
        self.redis = aioredis.from_url(settings.redis_url)
        self.targets = TargetCache(self.redis)
        self._notification_task: asyncio.Task | None = None
        self._targets_task: asyncio.Task | None = None

    async def setup_hook(self):
        synced = await self.tree.sync()
        logger.info("discord_commands_synced", count=len(synced))

    async def on_ready(self):
        logger.info("discord_bot_ready", user=str(self.user))
        # on_ready fires again on reconnect; keep a single listener
        if self._notification_task is None or self._notification_task.done():
            self._notification_task = asyncio.create_task(self._notification_listener())
        if self._targets_task is None or self._targets_task.done():
            self._targets_task = asyncio.create_task(self._targets_refresher())

    async def close(self):
        for task in (self._notification_task, self._targets_task):
            if task is not None:
                task.cancel()
        await super().close()
        await self.redis.aclose()

    # ------------------------------------------------------------------
    # Delivery targets
    # ------------------------------------------------------------------

    def collect_targets(self) -> tuple[list[ChannelTarget], dict[str, list[RoleTarget]]]:
        """Text channels across every guild, and each guild's roles without @everyone."""
        channels: list[ChannelTarget] = []
        roles: dict[str, list[RoleTarget]] = {}
        for guild in self.guilds:
            guild_id = str(guild.id)
            channels.extend(
                ChannelTarget(id=str(c.id), name=c.name, guild=guild.name, guild_id=guild_id)
                for c in guild.text_channels
            )
            roles[guild_id] = sorted(
                (
                    RoleTarget(id=str(r.id), name=r.name, color=str(r.colour))
                    for r in guild.roles
                    if not r.is_default()
                ),
                key=lambda r: r.name.lower(),
            )
        return channels, roles

    async def publish_targets(self) -> None:
        channels, roles = self.collect_targets()
        for guild_id, guild_roles in roles.items():
            await self.targets.set_roles(guild_id, guild_roles)
        await self.targets.set_channels(channels)
        logger.info("discord_targets_published", guilds=len(roles), channels=len(channels))

    async def _targets_refresher(self):
        """Republish targets before the cached copy expires."""
        while True:
            try:
                await self.publish_targets()
            except Exception as e:
                logger.error("discord_targets_publish_failed", error=str(e))
            await asyncio.sleep(TARGET_REFRESH_SECONDS)

    async def on_guild_join(self, guild):
        await self.publish_targets()

    async def on_guild_remove(self, guild):
        await self.targets.clear_roles(str(guild.id))
        await self.publish_targets()

    async def on_guild_channel_create(self, channel):
        await self.publish_targets()

    async def on_guild_channel_delete(self, channel):
        await self.publish_targets()

    async def on_guild_channel_update(self, before, after):
        await self.publish_targets()

    async def on_guild_role_create(self, role):
        await self.publish_targets()

    async def on_guild_role_delete(self, role):
        await self.publish_targets()

    async def on_guild_role_update(self, before, after):
        await self.publish_targets()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notification_listener(self):
        """Subscribe to Redis notifications and deliver them as embeds."""
        try:
            pubsub = self.redis.pubsub()
            await pubsub.subscribe(self.settings.notification_channel)
            logger.info("discord_notification_listener_started", channel=self.settings.notification_channel)

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    notification = Notification.model_validate_json(message["data"])
                except ValueError as e:
                    logger.error("notification_invalid", error=str(e))
                    continue
                await self.deliver(notification)
        except Exception as e:
            logger.error("notification_listener_failed", error=str(e))

    async def _resolve_channel(self, channel_id: int):
        channel = self.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden):
                return None
        return channel

    async def deliver(self, notification: Notification) -> bool:
        """Send one notification; returns False when the channel is missing or the send fails."""
        try:
            channel_id = int(notification.platform_channel_id)
        except ValueError:
            logger.error("notification_channel_invalid", channel_id=notification.platform_channel_id)
            return False

        channel = await self._resolve_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            logger.error(
                "notification_channel_missing",
                channel_id=notification.platform_channel_id,
                reminder_id=notification.reminder_id,
            )
            return False

        try:
            await channel.send(
                content=notification.mention,
                embed=self.normalizer.to_embed(notification),
                allowed_mentions=discord.AllowedMentions(roles=True),
            )
        except discord.HTTPException as e:
            logger.error(
                "notification_send_failed",
                channel_id=notification.platform_channel_id,
                reminder_id=notification.reminder_id,
                error=str(e),
            )
            return False

        logger.info(
            "notification_sent",
            channel_id=notification.platform_channel_id,
            reminder_id=notification.reminder_id,
            kind=notification.kind,
        )
        return True
