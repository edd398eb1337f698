import discord
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

MAX_TITLE = 256
MAX_DESC = 4096
MAX_FIELD_NAME = 256
MAX_FIELD_VALUE = 1024
MAX_FOOTER = 2048

# Spammed content shown in reports
MAX_SPAM_PREVIEW = 1000

def clamp(text: str, limit: int) -> str:
    if not text:
        return text
    if len(text) <= limit:
        return text
    return text[:limit - 15] + "\n*(truncated)*"

def preview(content: str, limit: int = MAX_SPAM_PREVIEW) -> str:
    """Cuts content to ``limit`` characters, ending with '...' when shortened."""
    if len(content) <= limit:
        return content
    return content[:limit - 3] + "..."

def describe_window(window: timedelta) -> str:
    seconds = int(window.total_seconds())
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        minutes = seconds // 60
        return "minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"

class EmbedBuilder:
    @staticmethod
    def build(
        *,
        title: str,
        description: str,
        color: discord.Color = discord.Color.blue(),
        footer: str = "Echoguard Anti-Spam",
        fields: Optional[list] = None
    ) -> discord.Embed:
        embed = discord.Embed(
            title=clamp(title, MAX_TITLE),
            description=clamp(description, MAX_DESC),
            color=color,
            timestamp=datetime.now(timezone.utc)
        )

        embed.set_footer(text=clamp(footer, MAX_FOOTER))

        if fields:
            for name, value, inline in fields:
                embed.add_field(
                    name=clamp(str(name), MAX_FIELD_NAME),
                    value=clamp(str(value), MAX_FIELD_VALUE),
                    inline=inline
                )

        return embed

    @staticmethod
    def success(title: str, description: str, **kwargs) -> discord.Embed:
        return EmbedBuilder.build(
            title=title,
            description=description,
            color=discord.Color.green(),
            **kwargs
        )

    @staticmethod
    def error(title: str, description: str, **kwargs) -> discord.Embed:
        return EmbedBuilder.build(
            title=title,
            description=description,
            color=discord.Color.red(),
            **kwargs
        )

    @staticmethod
    def warning(title: str, description: str, **kwargs) -> discord.Embed:
        return EmbedBuilder.build(
            title=title,
            description=description,
            color=discord.Color.gold(),
            **kwargs
        )

    @staticmethod
    def info(title: str, description: str, **kwargs) -> discord.Embed:
        """Blue informational embed."""
        return EmbedBuilder.build(
            title=title,
            description=description,
            color=discord.Color.blurple(),
            **kwargs
        )

    @staticmethod
    def spam_report(
        user_id: int,
        channel_ids: Iterable[int],
        deleted_count: int,
        content: str,
        timed_out: bool,
        window: timedelta = timedelta(hours=1)
    ) -> discord.Embed:
        """
        Moderator report for a spam detection.

        Lists the affected channels, how many messages the purge removed and
        the spammed text in a code block.
        """
        channel_mentions = ", ".join(f"<#{cid}>" for cid in sorted(channel_ids)) or "Unknown"
        action = "has been timed out for spamming" if timed_out else "was caught spamming (timeout not possible)"

        description = "\n".join([
            f"User <@{user_id}> {action}.",
            f"Channels affected: {channel_mentions}",
            f"Deleted {deleted_count} messages from the last {describe_window(window)}.",
            "\nSpammed message:",
            "```",
            preview(content).replace("```", "`\u200b``"),
            "```",
        ])

        return EmbedBuilder.warning(
            title="Spam Detected",
            description=description,
            footer=f"User ID: {user_id}"
        )
