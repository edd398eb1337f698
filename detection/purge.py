"""
Cross-channel purge of a single user's recent messages.

Every eligible text channel of a guild is swept concurrently. A sweep pages
backwards through history in batches, deletes the user's messages that fall
inside the window, and stops once a batch has no matches or history runs out.
Discord refuses to bulk delete messages older than 14 days, so batches whose
oldest match is past that age are deleted one message at a time.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import discord

from utils.logger import get_logger

log = get_logger()

BATCH_SIZE = 100
BULK_DELETE_MAX_AGE = timedelta(days=14)

@dataclass
class SweepResult:
    """Outcome of one channel's sweep. A failed sweep still keeps what it deleted."""
    channel_id: int
    deleted: int = 0
    batches: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass
class PurgeReport:
    user_id: int
    sweeps: List[SweepResult] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(sweep.deleted for sweep in self.sweeps)

    @property
    def failed_channels(self) -> List[int]:
        return [sweep.channel_id for sweep in self.sweeps if not sweep.ok]

def is_eligible(channel, me: discord.Member) -> bool:
    if not isinstance(channel, discord.TextChannel):
        return False
    perms = channel.permissions_for(me)
    return perms.view_channel and perms.read_message_history and perms.manage_messages

class PurgeCoordinator:
    def __init__(self, batch_size: int = BATCH_SIZE, bulk_max_age: timedelta = BULK_DELETE_MAX_AGE):
        if not 1 <= batch_size <= 100:
            raise ValueError("batch_size must be between 1 and 100")
        self.batch_size = batch_size
        self.bulk_max_age = bulk_max_age

    async def purge(self, guild: discord.Guild, user_id: int, window: timedelta, now: Optional[datetime] = None) -> int:
        report = await self.purge_report(guild, user_id, window, now=now)
        return report.total_deleted

    async def purge_report(
        self,
        guild: discord.Guild,
        user_id: int,
        window: timedelta,
        now: Optional[datetime] = None
    ) -> PurgeReport:
        now = now or discord.utils.utcnow()
        report = PurgeReport(user_id=user_id)

        try:
            channels = await guild.fetch_channels()
        except Exception as e:
            log.error(f"[Purge] Could not list channels of guild {guild.id}", exc_info=e)
            return report

        eligible = [c for c in channels if is_eligible(c, guild.me)]
        report.sweeps = list(await asyncio.gather(
            *(self._sweep(channel, user_id, now - window, now) for channel in eligible)
        ))

        log.moderation(
            f"[Purge] Deleted {report.total_deleted} message(s) from user {user_id} "
            f"across {len(eligible)} channel(s) in guild {guild.id}."
        )
        if report.failed_channels:
            log.warning(f"[Purge] Sweep failed in channel(s): {report.failed_channels}")
        return report

    async def _sweep(self, channel: discord.TextChannel, user_id: int, cutoff: datetime, now: datetime) -> SweepResult:
        result = SweepResult(channel_id=channel.id)
        before = None

        try:
            while True:
                batch = await self.fetch_batch(channel, before)
                result.batches += 1

                matches = [m for m in batch if m.author.id == user_id and m.created_at > cutoff]
                if not matches:
                    break

                result.deleted += await self._delete_matches(channel, matches, now)

                if len(batch) < self.batch_size:
                    break
                before = batch[-1]
        except Exception as e:
            log.error(f"[Purge] Error processing channel {channel.id}", exc_info=e)
            result.error = e

        return result

    async def fetch_batch(self, channel: discord.TextChannel, before: Optional[discord.Message]) -> List[discord.Message]:
        """Newest-first page of history strictly older than ``before``."""
        return [message async for message in channel.history(limit=self.batch_size, before=before)]

    async def _delete_matches(self, channel: discord.TextChannel, matches: Sequence[discord.Message], now: datetime) -> int:
        oldest = min(m.created_at for m in matches)

        if oldest > now - self.bulk_max_age:
            try:
                await channel.delete_messages(matches)
                return len(matches)
            except (discord.HTTPException, OSError, asyncio.TimeoutError) as e:
                log.warning(f"[Purge] Bulk delete of {len(matches)} message(s) failed in channel {channel.id}: {e}")
                return 0

        results = await asyncio.gather(*(m.delete() for m in matches), return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            log.warning(f"[Purge] {len(failures)} of {len(matches)} single delete(s) failed in channel {channel.id}")
        return len(matches) - len(failures)
