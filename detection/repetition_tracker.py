import asyncio
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from utils.logger import get_logger

log = get_logger()

# (guild_id, user_id): the same account is a separate member in every guild
MemberKey = Tuple[int, int]

class ObservationStatus(str, Enum):
    CONTINUING = "continuing"
    THRESHOLD_CROSSED = "threshold_crossed"

@dataclass(frozen=True)
class SpamSnapshot:
    guild_id: int
    user_id: int
    content: str
    repeat_count: int
    message_ids: FrozenSet[int]
    channel_ids: FrozenSet[int]

@dataclass(frozen=True)
class Observation:
    status: ObservationStatus
    snapshot: SpamSnapshot

    @property
    def threshold_crossed(self) -> bool:
        return self.status is ObservationStatus.THRESHOLD_CROSSED

@dataclass
class UserActivityState:
    guild_id: int
    user_id: int
    last_message_content: str
    repeat_count: int = 1
    recent_message_ids: Set[int] = field(default_factory=set)
    affected_channels: Set[int] = field(default_factory=set)
    expiry_handle: Optional[asyncio.TimerHandle] = None
    last_seen: float = 0.0

    @property
    def key(self) -> MemberKey:
        return (self.guild_id, self.user_id)

    def start_streak(self, content: str, channel_id: int, message_id: int):
        self.last_message_content = content
        self.repeat_count = 1
        self.recent_message_ids = {message_id}
        self.affected_channels = {channel_id}

    def cancel_expiry(self):
        if self.expiry_handle is not None:
            self.expiry_handle.cancel()
            self.expiry_handle = None

    def snapshot(self) -> SpamSnapshot:
        return SpamSnapshot(
            guild_id=self.guild_id,
            user_id=self.user_id,
            content=self.last_message_content,
            repeat_count=self.repeat_count,
            message_ids=frozenset(self.recent_message_ids),
            channel_ids=frozenset(self.affected_channels),
        )

class RepetitionTracker:
    """
    Tracks consecutive identical messages per guild member.

    A member's entry lives until either the streak reaches ``threshold``
    (entry is consumed and THRESHOLD_CROSSED is returned) or ``window``
    passes without a new observation (entry silently expires). Streaks of
    the same user in different guilds never mix.

    Observations for the same member are serialized through a sharded lock
    map, so unrelated members rarely share a lock and memory stays bounded
    by the shard count rather than the member count.
    """

    def __init__(self, threshold: int = 3, window: timedelta = timedelta(hours=1), lock_shards: int = 64):
        if threshold < 2:
            raise ValueError("threshold must be at least 2")
        if lock_shards < 1:
            raise ValueError("lock_shards must be positive")
        self.threshold = threshold
        self.window = window
        self._states: Dict[MemberKey, UserActivityState] = {}
        self._locks: List[asyncio.Lock] = [asyncio.Lock() for _ in range(lock_shards)]

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, key: MemberKey) -> bool:
        return key in self._states

    def get(self, guild_id: int, user_id: int) -> Optional[UserActivityState]:
        return self._states.get((guild_id, user_id))

    def tracked_in(self, guild_id: int) -> int:
        return sum(1 for state in self._states.values() if state.guild_id == guild_id)

    def _lock_for(self, key: MemberKey) -> asyncio.Lock:
        return self._locks[hash(key) % len(self._locks)]

    async def observe(
        self,
        guild_id: int,
        user_id: int,
        channel_id: int,
        message_id: int,
        content: str,
        now: Optional[float] = None
    ) -> Observation:
        now = time.time() if now is None else now
        key = (guild_id, user_id)

        async with self._lock_for(key):
            state = self._states.get(key)

            if state is None:
                state = UserActivityState(guild_id=guild_id, user_id=user_id, last_message_content=content)
                state.start_streak(content, channel_id, message_id)
                self._states[key] = state
            elif state.last_message_content == content:
                # Re-delivered message, already counted
                if message_id not in state.recent_message_ids:
                    state.repeat_count += 1
                    state.recent_message_ids.add(message_id)
                    state.affected_channels.add(channel_id)
            else:
                state.start_streak(content, channel_id, message_id)

            state.last_seen = now

            if state.repeat_count >= self.threshold:
                state.cancel_expiry()
                del self._states[key]
                log.moderation(
                    f"User {user_id} repeated the same message {state.repeat_count} times "
                    f"across {len(state.affected_channels)} channel(s) in guild {guild_id}."
                )
                return Observation(ObservationStatus.THRESHOLD_CROSSED, state.snapshot())

            self._schedule_expiry(state)
            return Observation(ObservationStatus.CONTINUING, state.snapshot())

    def _schedule_expiry(self, state: UserActivityState):
        state.cancel_expiry()
        loop = asyncio.get_running_loop()
        state.expiry_handle = loop.call_later(self.window.total_seconds(), self._expire, state)

    def _expire(self, state: UserActivityState):
        # Only drop the exact entry this timer was armed for
        if self._states.get(state.key) is state:
            del self._states[state.key]
            state.expiry_handle = None
            log.debug(f"Activity state for user {state.user_id} in guild {state.guild_id} expired.")

    def forget(self, guild_id: int, user_id: int) -> bool:
        """Drops a member's streak. Returns False if nothing was tracked."""
        state = self._states.pop((guild_id, user_id), None)
        if state is None:
            return False
        state.cancel_expiry()
        return True

    def clear(self):
        for state in self._states.values():
            state.cancel_expiry()
        self._states.clear()
