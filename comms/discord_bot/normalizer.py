"""Discord rendering for reminder notifications and listings."""

from __future__ import annotations

from datetime import datetime

import discord

from shared.schemas.notifications import Notification

# Discord embed limits
TITLE_LIMIT = 256
DESCRIPTION_LIMIT = 4096
FIELD_VALUE_LIMIT = 1024
MAX_FIELDS = 25

LIST_COLOR = 0x0099FF


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class DiscordNormalizer:
    """Convert reminder payloads to Discord embeds."""

    def to_embed(self, notification: Notification) -> discord.Embed:
        embed = discord.Embed(
            title=_truncate(notification.title, TITLE_LIMIT),
            description=_truncate(notification.content, DESCRIPTION_LIMIT),
            color=notification.color,
            timestamp=notification.timestamp,
        )
        for field in notification.fields[:MAX_FIELDS]:
            embed.add_field(
                name=_truncate(field.name, TITLE_LIMIT),
                value=_truncate(field.value, FIELD_VALUE_LIMIT),
                inline=field.inline,
            )
        if notification.footer:
            embed.set_footer(text=notification.footer)
        return embed

    def reminder_list_embed(self, reminders: list[dict]) -> discord.Embed:
        """Summary of the reminders in a channel for ``/reminder list``."""
        embed = discord.Embed(
            title="📋 Active Reminders",
            description=f"{len(reminders)} reminder(s) in this channel",
            color=LIST_COLOR,
        )
        for reminder in reminders[:MAX_FIELDS]:
            lines = [
                f"**Schedule:** {reminder.get('schedule_description', '?')}",
                f"**Message:** {reminder['content']['message']}",
            ]
            role_id = reminder["target"].get("role_id")
            if role_id:
                lines.append(f"**Tags:** <@&{role_id}>")
            next_run = reminder.get("next_run")
            if next_run:
                epoch = int(datetime.fromisoformat(next_run).timestamp())
                lines.append(f"**Next:** <t:{epoch}:f> (<t:{epoch}:R>)")
            else:
                lines.append("**Status:** inactive")
            embed.add_field(
                name=f"Reminder #{reminder['id']}",
                value=_truncate("\n".join(lines), FIELD_VALUE_LIMIT),
                inline=False,
            )
        return embed
