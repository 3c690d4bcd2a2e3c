"""Tests for Discord delivery, embeds and the /reminder commands."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import discord
import pytest

from comms.discord_bot.bot import ReminderCommands, ReminderDiscordBot
from comms.discord_bot.normalizer import DiscordNormalizer
from shared.config import Settings
from shared.schemas.notifications import EmbedField, Notification
from shared.schemas.targets import ChannelTarget, RoleTarget

EVENT = datetime(2026, 10, 16, 17, 0, tzinfo=timezone.utc)


def _notification(**kwargs) -> Notification:
    defaults = dict(
        platform_channel_id="555",
        title="🔔 Reminder!",
        content="Stand-up <t:1792170000:R>",
        color=0x00FF00,
        footer="Reminder ID: 3 | Every 30 min",
        fields=[EmbedField(name="Active Hours", value="9:00 AM - 5:00 PM")],
        timestamp=EVENT,
        reminder_id=3,
        event_time=EVENT,
    )
    defaults.update(kwargs)
    return Notification(**defaults)


def _http_error(cls=discord.HTTPException) -> discord.HTTPException:
    response = MagicMock(status=403, reason="Forbidden")
    return cls(response, "Missing Access")


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class TestDiscordNormalizer:
    def test_to_embed(self):
        embed = DiscordNormalizer().to_embed(_notification())

        assert embed.title == "🔔 Reminder!"
        assert embed.description == "Stand-up <t:1792170000:R>"
        assert embed.colour.value == 0x00FF00
        assert embed.footer.text == "Reminder ID: 3 | Every 30 min"
        assert embed.timestamp == EVENT
        assert [(f.name, f.value) for f in embed.fields] == [("Active Hours", "9:00 AM - 5:00 PM")]

    def test_long_description_is_truncated(self):
        embed = DiscordNormalizer().to_embed(_notification(content="x" * 5000))
        assert len(embed.description) == 4096
        assert embed.description.endswith("…")

    def test_reminder_list_embed(self):
        reminders = [
            {
                "id": 1,
                "target": {"channel_id": "555", "role_id": "42"},
                "content": {"message": "Stand-up"},
                "next_run": "2026-10-16T17:00:00Z",
                "schedule_description": "Every 30 min",
            },
            {
                "id": 2,
                "target": {"channel_id": "555", "role_id": None},
                "content": {"message": "Retro"},
                "next_run": None,
                "schedule_description": "One-time",
            },
        ]

        embed = DiscordNormalizer().reminder_list_embed(reminders)

        assert embed.title == "📋 Active Reminders"
        assert [f.name for f in embed.fields] == ["Reminder #1", "Reminder #2"]
        epoch = int(EVENT.timestamp())
        assert "**Tags:** <@&42>" in embed.fields[0].value
        assert f"<t:{epoch}:R>" in embed.fields[0].value
        assert "**Status:** inactive" in embed.fields[1].value


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@pytest.fixture
def bot():
    return ReminderDiscordBot(Settings())


class TestDeliver:
    @pytest.mark.asyncio
    async def test_sends_mention_and_embed(self, bot):
        channel = MagicMock()
        channel.send = AsyncMock()

        with patch.object(bot, "get_channel", return_value=channel):
            assert await bot.deliver(_notification(mention="<@&42>")) is True

        kwargs = channel.send.call_args.kwargs
        assert kwargs["content"] == "<@&42>"
        assert kwargs["embed"].title == "🔔 Reminder!"
        assert kwargs["allowed_mentions"].roles is True

    @pytest.mark.asyncio
    async def test_fetches_uncached_channel(self, bot):
        channel = MagicMock()
        channel.send = AsyncMock()

        with patch.object(bot, "get_channel", return_value=None), patch.object(
            bot, "fetch_channel", AsyncMock(return_value=channel)
        ) as fetch:
            assert await bot.deliver(_notification()) is True

        fetch.assert_awaited_once_with(555)

    @pytest.mark.asyncio
    async def test_missing_channel(self, bot):
        with patch.object(bot, "get_channel", return_value=None), patch.object(
            bot, "fetch_channel", AsyncMock(side_effect=_http_error(discord.NotFound))
        ):
            assert await bot.deliver(_notification()) is False

    @pytest.mark.asyncio
    async def test_non_numeric_channel(self, bot):
        assert await bot.deliver(_notification(platform_channel_id="general")) is False

    @pytest.mark.asyncio
    async def test_send_failure(self, bot):
        channel = MagicMock()
        channel.send = AsyncMock(side_effect=_http_error())

        with patch.object(bot, "get_channel", return_value=channel):
            assert await bot.deliver(_notification()) is False


# ---------------------------------------------------------------------------
# Delivery targets
# ---------------------------------------------------------------------------


def _role(role_id: int, name: str, colour: int = 0, default: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=role_id, name=name, colour=discord.Colour(colour), is_default=lambda: default)


def _guild() -> SimpleNamespace:
    return SimpleNamespace(
        id=1,
        name="Guild",
        text_channels=[SimpleNamespace(id=555, name="general"), SimpleNamespace(id=556, name="alerts")],
        roles=[
            _role(1, "@everyone", default=True),
            _role(43, "moderators", 0x00FF00),
            _role(42, "Crew", 0xFF0000),
        ],
    )


class TestTargets:
    def test_collect_targets(self, bot):
        with patch.object(ReminderDiscordBot, "guilds", new_callable=PropertyMock, return_value=[_guild()]):
            channels, roles = bot.collect_targets()

        assert channels == [
            ChannelTarget(id="555", name="general", guild="Guild", guild_id="1"),
            ChannelTarget(id="556", name="alerts", guild="Guild", guild_id="1"),
        ]
        # @everyone dropped, sorted by name
        assert roles == {
            "1": [
                RoleTarget(id="42", name="Crew", color="#ff0000"),
                RoleTarget(id="43", name="moderators", color="#00ff00"),
            ]
        }

    @pytest.mark.asyncio
    async def test_publish_targets(self, bot):
        bot.targets = AsyncMock()

        with patch.object(ReminderDiscordBot, "guilds", new_callable=PropertyMock, return_value=[_guild()]):
            await bot.publish_targets()

        bot.targets.set_roles.assert_awaited_once()
        assert bot.targets.set_roles.call_args.args[0] == "1"
        channels = bot.targets.set_channels.call_args.args[0]
        assert [c.id for c in channels] == ["555", "556"]

    @pytest.mark.asyncio
    async def test_guild_remove_clears_roles(self, bot):
        bot.targets = AsyncMock()

        with patch.object(ReminderDiscordBot, "guilds", new_callable=PropertyMock, return_value=[]):
            await bot.on_guild_remove(SimpleNamespace(id=1))

        bot.targets.clear_roles.assert_awaited_once_with("1")
        bot.targets.set_channels.assert_awaited_once_with([])


# ---------------------------------------------------------------------------
# Slash commands
# ---------------------------------------------------------------------------


def _interaction(channel_id: int = 555, administrator: bool = True) -> MagicMock:
    interaction = MagicMock()
    interaction.channel_id = channel_id
    interaction.user.guild_permissions.administrator = administrator
    interaction.response.send_message = AsyncMock()
    return interaction


@pytest.fixture
def commands():
    api = MagicMock()
    api.list_reminders = AsyncMock(return_value=[])
    api.get_reminder = AsyncMock(return_value=None)
    api.delete_reminder = AsyncMock()
    return ReminderCommands(api, DiscordNormalizer())


class TestReminderCommands:
    @pytest.mark.asyncio
    async def test_non_admin_is_refused(self, commands):
        interaction = _interaction(administrator=False)

        assert await commands.interaction_check(interaction) is False
        assert interaction.response.send_message.call_args.kwargs["ephemeral"] is True

    @pytest.mark.asyncio
    async def test_admin_is_allowed(self, commands):
        assert await commands.interaction_check(_interaction()) is True

    @pytest.mark.asyncio
    async def test_list_empty_channel(self, commands):
        interaction = _interaction()

        await ReminderCommands.list_reminders.callback(commands, interaction)

        commands.api.list_reminders.assert_awaited_once_with("555")
        assert "No reminders" in interaction.response.send_message.call_args.args[0]

    @pytest.mark.asyncio
    async def test_stop_deletes_reminder(self, commands):
        commands.api.get_reminder.return_value = {"id": 5, "target": {"channel_id": "555"}}
        interaction = _interaction()

        await ReminderCommands.stop.callback(commands, interaction, 5)

        commands.api.delete_reminder.assert_awaited_once_with(5)
        assert interaction.response.send_message.call_args.args[0] == "✅ Reminder #5 stopped!"

    @pytest.mark.asyncio
    async def test_stop_other_channel(self, commands):
        commands.api.get_reminder.return_value = {"id": 5, "target": {"channel_id": "999"}}
        interaction = _interaction()

        await ReminderCommands.stop.callback(commands, interaction, 5)

        commands.api.delete_reminder.assert_not_awaited()
        assert interaction.response.send_message.call_args.kwargs["ephemeral"] is True
