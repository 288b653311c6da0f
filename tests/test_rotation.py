import datetime
import threading

from leadmailer.config import RotationSettings
from leadmailer.database.models import SenderAccount
from leadmailer.email.rotation import SenderRotation


def test_selects_least_used_account_with_id_tiebreak(db_session, make_account):
    busy = make_account("busy", sent_today=5)
    first = make_account("first", sent_today=1)
    second = make_account("second", sent_today=1)
    make_account("full", sent_today=10, daily_limit=10)
    make_account("off", sent_today=0, is_active=False)

    rotation = SenderRotation(db_session)

    assert rotation.select_account().id == first.id
    assert [a.name for a in rotation.available_accounts()] == ["first", "second", "busy"]
    assert rotation.total_remaining_capacity() == 9 + 9 + 5
    assert second.remaining_capacity == 9
    assert busy.remaining_capacity == 5


def test_no_account_with_capacity(db_session, make_account):
    make_account("full", sent_today=3, daily_limit=3)

    rotation = SenderRotation(db_session)

    assert rotation.select_account() is None
    assert rotation.reserve() is None


def test_reserve_counts_against_the_daily_limit(db_session, make_account):
    account = make_account("only", daily_limit=2)
    rotation = SenderRotation(db_session)

    assert rotation.reserve().id == account.id
    assert rotation.reserve().id == account.id
    assert rotation.reserve() is None
    assert account.sent_today == 2


def test_reserve_prefers_requested_account_while_it_has_capacity(db_session, make_account):
    make_account("idle", sent_today=0)
    preferred = make_account("preferred", sent_today=4, daily_limit=5)
    rotation = SenderRotation(db_session)

    assert rotation.reserve(preferred.id).id == preferred.id
    # Now at its limit, so rotation falls back to the least used account
    assert rotation.reserve(preferred.id).name == "idle"


def test_preferred_account_filled_by_another_writer_falls_back(db_session, make_account, monkeypatch):
    idle = make_account("idle", sent_today=0)
    preferred = make_account("preferred", sent_today=5, daily_limit=5)
    rotation = SenderRotation(db_session)
    # The candidate list was read before another process used up the preferred account
    monkeypatch.setattr(rotation, "available_accounts", lambda: [preferred, idle])

    assert rotation.reserve(preferred.id).id == idle.id
    assert preferred.sent_today == 5


def test_concurrent_reservations_never_overshoot(db_session, make_account):
    account = make_account("shared", daily_limit=5)
    rotation = SenderRotation(db_session)
    results = []

    def worker():
        results.append(rotation.reserve())

    threads = [threading.Thread(target=worker) for _ in range(12)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len([r for r in results if r is not None]) == 5
    db_session.refresh(account)
    assert account.sent_today == 5


def test_health_threshold_is_inclusive(db_session):
    rotation = SenderRotation(db_session, RotationSettings(health_threshold=70))

    assert rotation.is_healthy(SenderAccount(success_count=0, failure_count=0))
    assert rotation.is_healthy(SenderAccount(success_count=7, failure_count=3))
    assert not rotation.is_healthy(SenderAccount(success_count=69, failure_count=31))


def test_sweep_disables_only_unhealthy_accounts(db_session, make_account):
    healthy = make_account("healthy", success_count=8, failure_count=2)
    fresh = make_account("fresh")
    sick = make_account("sick", success_count=1, failure_count=3)
    rotation = SenderRotation(db_session)

    disabled = rotation.sweep_unhealthy()

    assert [a.name for a in disabled] == ["sick"]
    assert sick.is_active is False
    assert healthy.is_active and fresh.is_active
    assert rotation.sweep_unhealthy() == []


def test_record_outcome_updates_counters(db_session, clock, make_account):
    account = make_account("primary")
    rotation = SenderRotation(db_session, clock=clock)

    rotation.record_outcome(account, True)
    rotation.record_outcome(account, False)

    assert account.success_count == 1
    assert account.failure_count == 1
    assert account.last_used_at == clock()
    assert account.success_rate == 50.0


def test_reset_daily_counters(db_session, clock, make_account):
    stale = make_account("stale", sent_today=7, last_reset_date=datetime.date(2024, 3, 11))
    current = make_account("current", sent_today=3, last_reset_date=datetime.date(2024, 3, 12))
    rotation = SenderRotation(db_session, clock=clock)

    assert rotation.reset_daily_counters() == 1
    assert stale.sent_today == 0
    assert stale.last_reset_date == datetime.date(2024, 3, 12)
    assert current.sent_today == 3
