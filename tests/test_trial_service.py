"""
Unit tests for the trial lifecycle (creation, derived days, extend, terminate)
"""
import json
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from config.settings import settings
from crud.trial import TrialRepository
from models.entitlement import TrialRecord
from services.dual_store import TRIAL_STATUS, cache_key
from services.trial_service import (
    TrialLifecycleManager,
    compute_days_remaining,
    is_eligible,
    should_show_trial_banner,
    trial_expiration_message,
    trial_window,
)
from tests.conftest import FIXED_NOW
from utils.errors import InvalidState


@pytest.mark.asyncio
async def test_new_account_gets_full_seven_days(store, clock):
    """
    A brand-new account with nothing stored anywhere gets a 7-day trial
    that starts at midnight today and ends at 23:59:59.999 seven days later.
    """
    manager = TrialLifecycleManager(store, clock=clock)

    trial = await manager.initialize("user-a", account_created_at=clock())

    assert trial.days_remaining == 7
    assert trial.is_active is True
    assert trial.is_expired is False
    assert trial.start_date == datetime(2025, 3, 10, 0, 0, tzinfo=timezone.utc)
    assert trial.end_date == datetime(2025, 3, 17, 23, 59, 59, 999000, tzinfo=timezone.utc)


def test_trial_window_spans_seven_calendar_days():
    for hour in (0, 9, 23):
        start, end = trial_window(FIXED_NOW.replace(hour=hour), 7)
        assert end.date() - start.date() == timedelta(days=7)
        assert (start.hour, start.minute, start.second, start.microsecond) == (0, 0, 0, 0)
        assert (end.hour, end.minute, end.second, end.microsecond) == (23, 59, 59, 999000)


def test_trial_window_pins_local_midnight_across_dst(monkeypatch):
    """
    In a DST zone the window still starts at local midnight and ends at
    23:59:59.999 local time seven calendar days later, even though the
    UTC offset changes inside the window (US DST started 2025-03-09).
    """
    monkeypatch.setattr(settings, "trial_timezone", "America/New_York")
    new_york = ZoneInfo("America/New_York")

    start, end = trial_window(datetime(2025, 3, 6, 15, 0, tzinfo=timezone.utc), 7)

    local_start = start.astimezone(new_york)
    local_end = end.astimezone(new_york)
    assert local_start.replace(tzinfo=None) == datetime(2025, 3, 6, 0, 0)
    assert local_end.replace(tzinfo=None) == datetime(2025, 3, 13, 23, 59, 59, 999000)
    assert local_start.utcoffset() == timedelta(hours=-5)
    assert local_end.utcoffset() == timedelta(hours=-4)
    assert local_end.date() - local_start.date() == timedelta(days=7)


@pytest.mark.asyncio
async def test_initialize_persists_remote_and_cache(store, cache, test_db, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    trial = await manager.initialize("user-b", account_created_at=None)

    row = await TrialRepository(test_db).get_latest("user-b")
    assert row is not None
    assert row.is_active is True
    assert row.total_days == 7

    cached = json.loads(cache.get(cache_key("user-b", TRIAL_STATUS)))
    assert cached["user_id"] == "user-b"
    assert "days_remaining" not in cached
    assert TrialRecord.model_validate(cached).end_date == trial.end_date


@pytest.mark.asyncio
async def test_initialize_is_idempotent(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)

    first = await manager.initialize("user-c", account_created_at=clock())
    clock.advance(days=2)
    second = await manager.initialize("user-c", account_created_at=clock())

    assert second.start_date == first.start_date
    assert second.end_date == first.end_date


@pytest.mark.asyncio
async def test_initialize_anchors_to_signup_day(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)

    trial = await manager.initialize("user-d", account_created_at=FIXED_NOW - timedelta(days=3))

    assert trial.start_date == datetime(2025, 3, 7, tzinfo=timezone.utc)
    # 2025-03-14 23:59:59.999 minus 2025-03-10 14:30 is 4 days and change
    assert trial.days_remaining == 4


@pytest.mark.asyncio
async def test_get_status_recomputes_days_remaining(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    await manager.initialize("user-e", account_created_at=clock())

    clock.advance(days=1)
    status = await manager.get_status("user-e")

    assert status.days_remaining == 6


@pytest.mark.asyncio
async def test_get_status_missing_trial_returns_none(store):
    assert await TrialLifecycleManager(store).get_status("nobody") is None


@pytest.mark.asyncio
async def test_days_remaining_never_increases_and_zero_means_expired(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    created = await manager.initialize("user-f", account_created_at=clock())

    previous = None
    for _ in range(4 * 10):
        clock.advance(hours=6)
        status = await manager.get_status("user-f")
        if previous is not None:
            assert status.days_remaining <= previous
        assert (status.days_remaining == 0) == status.is_expired
        previous = status.days_remaining

    assert clock() > created.end_date
    assert previous == 0


def test_creation_day_reports_full_duration_late_at_night():
    start, end = trial_window(FIXED_NOW, 7)
    record = TrialRecord(user_id="u", start_date=start, end_date=end)

    assert compute_days_remaining(record, FIXED_NOW.replace(hour=23, minute=59)) == 7


def test_last_partial_day_still_counts_until_end():
    start, end = trial_window(FIXED_NOW - timedelta(days=7), 7)
    record = TrialRecord(user_id="u", start_date=start, end_date=end)

    assert compute_days_remaining(record, end - timedelta(hours=2)) == 1
    assert compute_days_remaining(record, end + timedelta(milliseconds=1)) == 0


def test_days_remaining_floors_partial_days():
    record = TrialRecord(
        user_id="u",
        start_date=datetime(2025, 3, 5, tzinfo=timezone.utc),
        end_date=FIXED_NOW + timedelta(days=3, hours=20),
    )
    assert compute_days_remaining(record, FIXED_NOW) == 3


@pytest.mark.parametrize(
    "age, expected",
    [
        (timedelta(0), True),
        (timedelta(days=6, hours=23), True),
        (timedelta(days=7), True),
        (timedelta(days=7, seconds=1), False),
        (timedelta(days=10), False),
    ],
)
def test_eligibility_by_account_age(age, expected):
    assert is_eligible(FIXED_NOW - age, FIXED_NOW, total_days=7) is expected


def test_unknown_signup_date_is_eligible():
    assert is_eligible(None, FIXED_NOW) is True


def test_unknown_signup_date_can_be_made_ineligible(monkeypatch):
    monkeypatch.setattr(settings, "trial_eligible_without_signup_date", False)
    assert is_eligible(None, FIXED_NOW) is False


def test_naive_signup_date_is_read_as_utc():
    assert is_eligible(FIXED_NOW.replace(tzinfo=None), FIXED_NOW) is True
    assert is_eligible((FIXED_NOW - timedelta(days=10)).replace(tzinfo=None), FIXED_NOW) is False


@pytest.mark.asyncio
async def test_initialize_accepts_naive_signup_date(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)

    trial = await manager.initialize("naive-signup", account_created_at=clock().replace(tzinfo=None))

    assert trial.days_remaining == 7
    assert trial.start_date == datetime(2025, 3, 10, 0, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_initialize_falls_back_to_cache_when_table_missing(offline_store, cache, clock):
    manager = TrialLifecycleManager(offline_store, clock=clock)

    created = await manager.initialize("user-g", account_created_at=clock())
    assert cache.get(cache_key("user-g", TRIAL_STATUS)) is not None

    clock.advance(days=2)
    status = await manager.get_status("user-g")
    assert status is not None
    assert status.end_date == created.end_date
    assert status.days_remaining == 5


@pytest.mark.asyncio
async def test_malformed_cache_entry_is_a_miss(offline_store, cache):
    cache.set(cache_key("user-h", TRIAL_STATUS), "{not json")

    assert await TrialLifecycleManager(offline_store).get_status("user-h") is None
    assert cache.get(cache_key("user-h", TRIAL_STATUS)) is None


@pytest.mark.asyncio
async def test_extend_pushes_end_date(store, test_db, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    created = await manager.initialize("user-i", account_created_at=clock())

    extended = await manager.extend("user-i", 3)

    assert extended.end_date == created.end_date + timedelta(days=3)
    assert extended.total_days == 10
    assert extended.days_remaining == 10

    row = await TrialRepository(test_db).get_latest("user-i")
    assert row.total_days == 10


@pytest.mark.asyncio
async def test_extend_rejects_inactive_trial(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    await manager.initialize("user-j", account_created_at=clock())
    await manager.terminate("user-j")

    with pytest.raises(InvalidState):
        await manager.extend("user-j", 2)


@pytest.mark.asyncio
async def test_extend_rejects_expired_trial(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    await manager.initialize("user-k", account_created_at=clock())
    clock.advance(days=9)

    with pytest.raises(InvalidState):
        await manager.extend("user-k", 2)


@pytest.mark.asyncio
async def test_extend_requires_positive_days(store, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    await manager.initialize("user-l", account_created_at=clock())

    with pytest.raises(InvalidState):
        await manager.extend("user-l", 0)


@pytest.mark.asyncio
async def test_extend_missing_trial(store):
    with pytest.raises(InvalidState):
        await TrialLifecycleManager(store).extend("nobody", 1)


@pytest.mark.asyncio
async def test_terminate_deactivates_without_regranting(store, cache, test_db, clock):
    manager = TrialLifecycleManager(store, clock=clock)
    created = await manager.initialize("user-m", account_created_at=clock())

    await manager.terminate("user-m")

    row = await TrialRepository(test_db).get_latest("user-m")
    assert row.is_active is False
    assert row.ended_at is not None

    status = await manager.get_status("user-m")
    assert status.is_active is False

    again = await manager.initialize("user-m", account_created_at=clock())
    assert again.is_active is False
    assert again.start_date == created.start_date


@pytest.mark.asyncio
async def test_terminate_clears_cache_offline(offline_store, cache, clock):
    manager = TrialLifecycleManager(offline_store, clock=clock)
    await manager.initialize("user-n", account_created_at=clock())

    await manager.terminate("user-n")

    assert cache.get(cache_key("user-n", TRIAL_STATUS)) is None


@pytest.mark.parametrize(
    "days, text",
    [
        (0, "Your free trial has expired. Subscribe now to continue learning!"),
        (1, "Your free trial expires tomorrow. Subscribe now to keep learning!"),
        (3, "Your free trial expires in 3 days. Subscribe now to keep learning!"),
        (6, "You have 6 days left in your free trial."),
    ],
)
def test_trial_expiration_message(days, text):
    assert trial_expiration_message(days) == text


def test_trial_banner_window():
    assert [should_show_trial_banner(d) for d in (0, 1, 3, 4)] == [False, True, True, False]
