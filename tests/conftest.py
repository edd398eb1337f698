import os

# config.shared_config is built at import time
os.environ.setdefault("DISCORD_TOKEN", "test-token")

import pytest
import discord
from datetime import timedelta
from typing import List, Optional
from unittest.mock import MagicMock, AsyncMock

SPAMMER_ID = 111111
BYSTANDER_ID = 333333

def make_message(
    author_id: int = SPAMMER_ID,
    message_id: int = 1,
    age: timedelta = timedelta(minutes=1),
    now=None
):
    """Message mock as returned by channel.history()."""
    now = now or discord.utils.utcnow()
    message = MagicMock(spec=discord.Message)
    message.id = message_id
    message.author = MagicMock()
    message.author.id = author_id
    message.created_at = now - age
    message.delete = AsyncMock()
    return message

class FakeTextChannel:
    """
    Stand-in for discord.TextChannel history paging.

    ``messages`` is kept newest first with descending ids, like snowflakes.
    history(before=...) returns the page strictly older than the given
    message, and deletions remove messages from the channel.
    """

    def __init__(self, channel_id: int, messages: Optional[List] = None):
        self.mock = MagicMock(spec=discord.TextChannel)
        self.mock.id = channel_id
        self.messages = list(messages or [])
        self.history_calls = []
        self.mock.history = self.history
        self.mock.delete_messages = AsyncMock(side_effect=self._bulk_delete)
        for message in self.messages:
            message.delete = AsyncMock(side_effect=self._single_delete(message))

    def _single_delete(self, message):
        async def _delete(*args, **kwargs):
            self.messages.remove(message)
        return _delete

    async def _bulk_delete(self, messages, *args, **kwargs):
        for message in messages:
            self.messages.remove(message)

    def history(self, limit=100, before=None):
        self.history_calls.append((limit, before))
        older = [m for m in self.messages if before is None or m.id < before.id]
        page = older[:limit]

        async def _iter():
            for message in page:
                yield message
        return _iter()

@pytest.fixture
def mock_guild():
    guild = MagicMock(spec=discord.Guild)
    guild.id = 1
    guild.owner_id = 999999
    guild.me = MagicMock(spec=discord.Member)
    guild.me.id = 424242
    return guild

@pytest.fixture
def mock_member(mock_guild):
    member = MagicMock(spec=discord.Member)
    member.id = SPAMMER_ID
    member.name = "Spammer"
    member.bot = False
    member.roles = []
    member.guild = mock_guild
    member.timeout = AsyncMock()
    return member

@pytest.fixture
def grant_perms():
    """Returns a permissions_for side effect with the given flags set."""
    def _perms(view=True, history=True, manage=True, send=True):
        perms = MagicMock()
        perms.view_channel = view
        perms.read_message_history = history
        perms.manage_messages = manage
        perms.send_messages = send
        return perms
    return _perms
