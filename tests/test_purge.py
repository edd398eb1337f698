import asyncio
import pytest
import discord
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from conftest import BYSTANDER_ID, SPAMMER_ID, FakeTextChannel, make_message
from detection.purge import PurgeCoordinator, is_eligible

HOUR = timedelta(hours=1)

def build_history(now, count, author_id=SPAMMER_ID, start_id=10_000, age=timedelta(minutes=1), step=timedelta(seconds=1)):
    """``count`` messages newest first, ids descending."""
    return [
        make_message(author_id=author_id, message_id=start_id - i, age=age + step * i, now=now)
        for i in range(count)
    ]

def attach(mock_guild, grant_perms, *channels, perms=None):
    for channel in channels:
        channel.permissions_for = MagicMock(return_value=perms or grant_perms())
    mock_guild.fetch_channels = AsyncMock(return_value=list(channels))

@pytest.mark.asyncio
async def test_purge_bulk_deletes_recent_messages(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 5))
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert deleted == 5
    channel.mock.delete_messages.assert_awaited_once()
    assert channel.messages == []

@pytest.mark.asyncio
async def test_purge_paginates_150_messages(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 150))
    attach(mock_guild, grant_perms, channel.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert report.total_deleted == 150
    assert report.sweeps[0].batches == 2
    assert channel.mock.delete_messages.await_count == 2
    batch_sizes = [len(call.args[0]) for call in channel.mock.delete_messages.await_args_list]
    assert batch_sizes == [100, 50]
    # Second page starts after the oldest message of the first
    assert channel.history_calls[1][1].id == 10_000 - 99

@pytest.mark.asyncio
async def test_purge_only_deletes_target_user_inside_window(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    spam = build_history(now, 3, start_id=10_000)
    others = build_history(now, 3, author_id=BYSTANDER_ID, start_id=9_000)
    stale = build_history(now, 2, start_id=8_000, age=timedelta(hours=2))
    channel = FakeTextChannel(10, spam + others + stale)
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert deleted == 3
    assert channel.messages == others + stale

@pytest.mark.asyncio
async def test_purge_stops_when_batch_has_no_matches(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    others = build_history(now, 100, author_id=BYSTANDER_ID, start_id=20_000)
    spam = build_history(now, 5, start_id=10_000, age=timedelta(minutes=30))
    channel = FakeTextChannel(10, others + spam)
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert deleted == 0
    assert len(channel.history_calls) == 1
    channel.mock.delete_messages.assert_not_awaited()

@pytest.mark.asyncio
async def test_purge_sums_across_channels(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    first = FakeTextChannel(10, build_history(now, 4, start_id=10_000))
    second = FakeTextChannel(20, build_history(now, 7, start_id=20_000))
    attach(mock_guild, grant_perms, first.mock, second.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert report.total_deleted == 11
    assert sorted(s.deleted for s in report.sweeps) == [4, 7]

@pytest.mark.asyncio
async def test_old_messages_are_deleted_individually(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    history = build_history(now, 3, age=timedelta(days=20))
    channel = FakeTextChannel(10, history)
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, timedelta(days=30), now=now)

    assert deleted == 3
    channel.mock.delete_messages.assert_not_awaited()
    for message in history:
        message.delete.assert_awaited_once()

@pytest.mark.asyncio
async def test_one_old_match_forces_individual_deletes(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    history = build_history(now, 2, start_id=10_000) + build_history(now, 1, start_id=5_000, age=timedelta(days=15))
    channel = FakeTextChannel(10, history)
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, timedelta(days=30), now=now)

    assert deleted == 3
    channel.mock.delete_messages.assert_not_awaited()

@pytest.mark.asyncio
async def test_individual_delete_failures_count_only_successes(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    history = build_history(now, 4, age=timedelta(days=20))
    channel = FakeTextChannel(10, history)
    history[1].delete = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404), "Unknown Message"))
    history[2].delete = AsyncMock(side_effect=discord.Forbidden(MagicMock(status=403), "Missing Access"))
    attach(mock_guild, grant_perms, channel.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, timedelta(days=30), now=now)

    assert report.total_deleted == 2
    assert report.failed_channels == []

@pytest.mark.asyncio
async def test_bulk_delete_failure_moves_on_to_next_batch(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 130))
    real_bulk = channel.mock.delete_messages.side_effect
    calls = []

    async def flaky_bulk(messages, *args, **kwargs):
        calls.append(len(messages))
        if len(calls) == 1:
            raise discord.HTTPException(MagicMock(status=500), "Internal Server Error")
        await real_bulk(messages)

    channel.mock.delete_messages = AsyncMock(side_effect=flaky_bulk)
    attach(mock_guild, grant_perms, channel.mock)

    deleted = await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert calls == [100, 30]
    assert deleted == 30

@pytest.mark.asyncio
async def test_bulk_delete_connection_reset_moves_on_to_next_batch(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 130))
    real_bulk = channel.mock.delete_messages.side_effect
    calls = []

    async def resetting_bulk(messages, *args, **kwargs):
        calls.append(len(messages))
        if len(calls) == 1:
            raise ConnectionResetError(104, "Connection reset by peer")
        await real_bulk(messages)

    channel.mock.delete_messages = AsyncMock(side_effect=resetting_bulk)
    attach(mock_guild, grant_perms, channel.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert calls == [100, 30]
    assert report.total_deleted == 30
    assert report.failed_channels == []

@pytest.mark.asyncio
async def test_bulk_delete_timeout_moves_on_to_next_batch(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 130))
    real_bulk = channel.mock.delete_messages.side_effect
    calls = []

    async def slow_bulk(messages, *args, **kwargs):
        calls.append(len(messages))
        if len(calls) == 1:
            raise asyncio.TimeoutError()
        await real_bulk(messages)

    channel.mock.delete_messages = AsyncMock(side_effect=slow_bulk)
    attach(mock_guild, grant_perms, channel.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert calls == [100, 30]
    assert report.failed_channels == []

@pytest.mark.asyncio
async def test_failing_channel_does_not_abort_others(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    healthy = FakeTextChannel(10, build_history(now, 6))
    broken = FakeTextChannel(20, build_history(now, 6, start_id=20_000))

    def exploding_history(limit=100, before=None):
        raise discord.HTTPException(MagicMock(status=503), "Service Unavailable")

    broken.mock.history = exploding_history
    attach(mock_guild, grant_perms, healthy.mock, broken.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert report.total_deleted == 6
    assert report.failed_channels == [20]

@pytest.mark.asyncio
async def test_failure_mid_sweep_keeps_partial_count(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    channel = FakeTextChannel(10, build_history(now, 150))
    real_history = channel.history

    def history_failing_on_second_page(limit=100, before=None):
        if before is not None:
            raise discord.HTTPException(MagicMock(status=500), "Internal Server Error")
        return real_history(limit=limit, before=before)

    channel.mock.history = history_failing_on_second_page
    attach(mock_guild, grant_perms, channel.mock)

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert report.total_deleted == 100
    assert report.failed_channels == [10]

@pytest.mark.asyncio
async def test_channel_listing_failure_returns_zero(mock_guild):
    mock_guild.fetch_channels = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=500), "boom"))

    assert await PurgeCoordinator().purge(mock_guild, SPAMMER_ID, HOUR) == 0

@pytest.mark.asyncio
async def test_channel_listing_connection_reset_returns_zero(mock_guild):
    mock_guild.fetch_channels = AsyncMock(side_effect=ConnectionResetError(104, "Connection reset by peer"))

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR)

    assert report.total_deleted == 0
    assert report.sweeps == []

@pytest.mark.asyncio
async def test_ineligible_channels_are_skipped(mock_guild, grant_perms):
    now = discord.utils.utcnow()
    no_manage = FakeTextChannel(10, build_history(now, 3))
    hidden = FakeTextChannel(20, build_history(now, 3, start_id=20_000))
    voice = MagicMock(spec=discord.VoiceChannel)
    voice.id = 30

    no_manage.mock.permissions_for = MagicMock(return_value=grant_perms(manage=False))
    hidden.mock.permissions_for = MagicMock(return_value=grant_perms(view=False))
    mock_guild.fetch_channels = AsyncMock(return_value=[no_manage.mock, hidden.mock, voice])

    report = await PurgeCoordinator().purge_report(mock_guild, SPAMMER_ID, HOUR, now=now)

    assert report.sweeps == []
    assert report.total_deleted == 0
    assert no_manage.history_calls == [] and hidden.history_calls == []

def test_is_eligible_requires_text_channel(mock_guild, grant_perms):
    channel = MagicMock(spec=discord.TextChannel)
    channel.permissions_for = MagicMock(return_value=grant_perms())
    category = MagicMock(spec=discord.CategoryChannel)
    category.permissions_for = MagicMock(return_value=grant_perms())

    assert is_eligible(channel, mock_guild.me)
    assert not is_eligible(category, mock_guild.me)

def test_rejects_oversized_batches():
    with pytest.raises(ValueError):
        PurgeCoordinator(batch_size=101)
