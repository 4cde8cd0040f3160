"""Credit ledger: balances, clamping, atomic debits and the usage trail."""

import threading
from datetime import datetime, timedelta, timezone

from rapidalle.core.config import settings
from rapidalle.features.credits.service import (
    GENERATE_FEATURE,
    credit,
    debit,
    get_balance,
    get_credit_summary,
    reset_credits,
    set_balance,
    try_debit,
)
from rapidalle.features.usage.service import emit_usage_event, get_usage_events, total_credits_used
from rapidalle.features.users.service import get_user, update_user


def test_new_user_is_provisioned_with_initial_credits():
    assert get_user("ledger-new") is None
    assert get_balance("ledger-new") == settings.INITIAL_CREDITS
    assert get_user("ledger-new").credits == settings.INITIAL_CREDITS


def test_debit_then_credit_round_trip():
    set_balance("ledger-rt", 5)
    assert debit("ledger-rt", 2) == 3
    assert credit("ledger-rt", 2) == 5
    assert get_balance("ledger-rt") == 5


def test_debit_clamps_at_zero():
    set_balance("ledger-clamp", 2)
    assert debit("ledger-clamp", 5) == 0
    assert debit("ledger-clamp", 1) == 0
    assert get_balance("ledger-clamp") == 0

    # only the two credits that existed were consumed
    assert [e.credits for e in get_usage_events("ledger-clamp", feature=GENERATE_FEATURE)] == [2]
    assert total_credits_used("ledger-clamp") == 2


def test_try_debit_refuses_when_short():
    set_balance("ledger-short", 1)
    assert try_debit("ledger-short", 2) is None
    assert get_balance("ledger-short") == 1
    assert get_usage_events("ledger-short", feature=GENERATE_FEATURE) == []


def test_set_balance_floors_and_clamps():
    assert set_balance("ledger-set", 3.7) == 3
    assert set_balance("ledger-set", -4) == 0
    assert reset_credits("ledger-set") == 0


def test_usage_events_record_debits_positive_and_grants_negative():
    set_balance("ledger-usage", 10)
    try_debit("ledger-usage", 1, metadata={"source": "test"})
    debit("ledger-usage", 2)
    credit("ledger-usage", 5, feature="billing.starter")

    debits = get_usage_events("ledger-usage", feature=GENERATE_FEATURE)
    assert [e.credits for e in debits] == [1, 2]
    assert debits[0].metadata == {"source": "test"}

    grants = get_usage_events("ledger-usage", feature="billing.starter")
    assert [e.credits for e in grants] == [-5]
    assert total_credits_used("ledger-usage") == 3


def test_concurrent_try_debit_never_overspends():
    user_id = "ledger-race"
    set_balance(user_id, 3)
    results = []
    lock = threading.Lock()

    def worker():
        outcome = try_debit(user_id, 1)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    successes = [r for r in results if r is not None]
    assert len(successes) == 3
    assert sorted(successes) == [0, 1, 2]
    assert get_balance(user_id) == 0


def test_concurrent_debits_against_one_credit():
    user_id = "ledger-debit-race"
    set_balance(user_id, 1)
    results = []
    lock = threading.Lock()

    def worker():
        outcome = debit(user_id, 1)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == [0, 0]
    assert get_balance(user_id) == 0
    assert [e.credits for e in get_usage_events(user_id, feature=GENERATE_FEATURE)] == [1]


def test_credit_summary_reports_tier():
    set_balance("ledger-tier", 7)
    assert get_credit_summary("ledger-tier") == {"credits": 7, "tier": "free", "subscription": False}

    update_user("ledger-tier", subscription_tier="pro")
    summary = get_credit_summary("ledger-tier")
    assert summary["tier"] == "pro"
    assert summary["subscription"] is True


def test_total_credits_used_honours_window():
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    emit_usage_event("ledger-window", GENERATE_FEATURE, 4, occurred_at=now - timedelta(days=40))
    emit_usage_event("ledger-window", GENERATE_FEATURE, 2, occurred_at=now - timedelta(days=3))

    # the owning user row is provisioned without free credits
    assert get_user("ledger-window").credits == 0

    assert total_credits_used("ledger-window", window_days=30, now=now) == 2
    assert total_credits_used("ledger-window") == 6
    recent = get_usage_events("ledger-window", start_time=now - timedelta(days=7))
    assert [e.credits for e in recent] == [2]
