import discord
from discord.ext import commands
from datetime import timedelta
from typing import FrozenSet, Optional
from config import shared_config
from detection.purge import PurgeCoordinator
from detection.repetition_tracker import RepetitionTracker, SpamSnapshot
from utils.embed_builder import EmbedBuilder
from utils.logger import get_logger
from utils.permissions import can_notify, can_timeout
from utils.rate_limiter import call_with_backoff

log = get_logger()

TIMEOUT_REASON = "Spamming the same message"

class SpamGuard(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        tracker: Optional[RepetitionTracker] = None,
        purger: Optional[PurgeCoordinator] = None,
        exempt_role_ids: Optional[FrozenSet[int]] = None,
        notify_channel_id: Optional[int] = None,
        window: Optional[timedelta] = None,
        timeout_duration: Optional[timedelta] = None
    ):
        self.bot = bot
        self.window = window or shared_config.spam_window
        self.timeout_duration = timeout_duration or shared_config.timeout_duration
        self.tracker = tracker or RepetitionTracker(threshold=shared_config.SPAM_THRESHOLD, window=self.window)
        self.purger = purger or PurgeCoordinator()
        self.exempt_role_ids = shared_config.EXEMPT_ROLE_IDS if exempt_role_ids is None else exempt_role_ids
        self.notify_channel_id = shared_config.TIMEOUT_CHANNEL_ID if notify_channel_id is None else notify_channel_id

    def cog_unload(self):
        self.tracker.clear()

    def is_exempt(self, member: discord.Member) -> bool:
        return any(role.id in self.exempt_role_ids for role in member.roles)

    def should_track(self, message: discord.Message) -> bool:
        if message.guild is None or message.webhook_id is not None:
            return False
        if not isinstance(message.author, discord.Member) or message.author.bot:
            return False
        # Attachment-only posts carry no text to compare
        if not message.content:
            return False
        return not self.is_exempt(message.author)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if not self.should_track(message):
            return

        observation = await self.tracker.observe(
            message.guild.id,
            message.author.id,
            message.channel.id,
            message.id,
            message.content,
            now=message.created_at.timestamp()
        )

        if observation.threshold_crossed:
            await self.handle_spam(message.guild, message.author, observation.snapshot)

    async def handle_spam(self, guild: discord.Guild, member: discord.Member, snapshot: SpamSnapshot):
        # Tracker state is already consumed here; failures only cost the report
        try:
            timed_out = await self.suspend(member)
            deleted = await self.purger.purge(guild, member.id, self.window)

            embed = EmbedBuilder.spam_report(
                user_id=member.id,
                channel_ids=snapshot.channel_ids,
                deleted_count=deleted,
                content=snapshot.content,
                timed_out=timed_out,
                window=self.window
            )
            await self.notify(embed)
        except Exception as e:
            log.error(f"Error handling spam from user {member.id} in guild {guild.id}", exc_info=e)

    async def suspend(self, member: discord.Member) -> bool:
        if not can_timeout(member):
            log.warning(f"Cannot time out {member} ({member.id}): missing permission or role hierarchy.")
            return False

        ok, error = await call_with_backoff(
            lambda: member.timeout(self.timeout_duration, reason=TIMEOUT_REASON)
        )
        if ok:
            log.moderation(f"Timed out {member} ({member.id}) for {self.timeout_duration}.")
        else:
            log.error(f"Error timing out member {member.id}", exc_info=error)
        return ok

    async def notify(self, embed: discord.Embed) -> bool:
        if not self.notify_channel_id:
            log.warning("TIMEOUT_CHANNEL_ID not configured, spam report dropped.")
            return False

        channel = self.bot.get_channel(self.notify_channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(self.notify_channel_id)
            except discord.HTTPException as e:
                log.error(f"Could not fetch notification channel {self.notify_channel_id}", exc_info=e)
                return False

        if not isinstance(channel, discord.abc.GuildChannel) or not can_notify(channel):
            log.warning(f"Missing Send Messages in notification channel {self.notify_channel_id}.")
            return False

        ok, error = await call_with_backoff(lambda: channel.send(embed=embed))
        if not ok:
            log.error("Error sending spam notification", exc_info=error)
        return ok

async def setup(bot: commands.Bot):
    await bot.add_cog(SpamGuard(bot))
