from datetime import datetime, timezone

import pytest

from errors import ApiError
from quota import (
    check_quota,
    ensure_monthly_bucket,
    first_day_next_month_ms,
    mark_trial,
    mark_usage,
    month_key,
    renew_at,
    trial_allowed,
)
from store import Account


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _account(plan="FREE", used=0, boost_used=0, mk="2026-03"):
    acc = Account(account_id="acc-1", plan=plan)
    acc.usage.month_key = mk
    acc.usage.used = used
    acc.usage.boost_used = boost_used
    return acc


def test_month_key_and_next_month():
    assert month_key(NOW) == "2026-03"
    assert first_day_next_month_ms(NOW) == int(datetime(2026, 4, 1, tzinfo=timezone.utc).timestamp() * 1000)
    december = datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)
    assert first_day_next_month_ms(december) == int(datetime(2027, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)


def test_renew_at_prefers_stripe_period_end():
    acc = _account()
    assert renew_at(acc, NOW) == first_day_next_month_ms(NOW)
    acc.stripe.current_period_end = 1_900_000_000_000
    assert renew_at(acc, NOW) == 1_900_000_000_000


def test_month_rollover_resets_counters():
    acc = _account(used=25, boost_used=3, mk="2026-02")
    acc.usage.last_ts = 123

    assert ensure_monthly_bucket(acc, NOW) is True
    assert (acc.usage.month_key, acc.usage.used, acc.usage.boost_used, acc.usage.last_ts) == ("2026-03", 0, 0, 0)
    assert ensure_monthly_bucket(acc, NOW) is False


def test_free_quota_reached(settings):
    acc = _account(used=25)

    with pytest.raises(ApiError) as exc:
        check_quota(acc, False, settings, NOW)

    err = exc.value
    assert err.status_code == 429
    assert err.error == "quota_reached"
    assert err.extra["used"] == 25
    assert err.extra["limit"] == 25
    assert err.extra["renewAt"] == first_day_next_month_ms(NOW)
    assert acc.usage.used == 25


def test_pro_limit_applies_to_pro(settings):
    check_quota(_account(plan="PRO", used=25), False, settings, NOW)
    with pytest.raises(ApiError):
        check_quota(_account(plan="PRO", used=250), False, settings, NOW)


def test_boost_requires_pro(settings):
    with pytest.raises(ApiError) as exc:
        check_quota(_account(), True, settings, NOW)
    assert exc.value.status_code == 402
    assert exc.value.error == "boost_requires_pro"


def test_boost_quota_reached(settings):
    acc = _account(plan="PRO", used=10, boost_used=50)
    with pytest.raises(ApiError) as exc:
        check_quota(acc, True, settings, NOW)
    assert exc.value.status_code == 429
    assert exc.value.error == "boost_quota_reached"
    assert exc.value.extra["boostLimit"] == 50


def test_mark_usage_counts_boost_separately():
    acc = _account(plan="PRO")
    mark_usage(acc, False, NOW)
    mark_usage(acc, True, NOW)
    assert acc.usage.used == 2
    assert acc.usage.boost_used == 1
    assert acc.usage.last_ts == int(NOW.timestamp() * 1000)


def test_trial_reasons(settings):
    acc = _account()
    assert trial_allowed(acc, settings, NOW)["reason"] == "trial_disabled"

    settings.trial_enabled = True
    assert trial_allowed(acc, settings, NOW)["reason"] == "missing_server_key"

    settings.server_openai_key = "sk-server"
    assert trial_allowed(acc, settings, NOW)["ok"] is True
    assert trial_allowed(_account(plan="PRO"), settings, NOW)["reason"] == "already_pro"

    settings.byok_only = True
    assert trial_allowed(acc, settings, NOW)["reason"] == "byok_only"


def test_trial_window_is_rolling(settings):
    settings.trial_enabled = True
    settings.server_openai_key = "sk-server"
    acc = _account()

    for _ in range(3):
        mark_trial(acc, NOW)
    result = trial_allowed(acc, settings, NOW)
    assert result == {"ok": False, "reason": "trial_limit_reached", "used": 3, "limit": 3}

    later = datetime(2026, 3, 16, 12, 0, 1, tzinfo=timezone.utc)
    assert trial_allowed(acc, settings, later)["ok"] is True
    assert acc.trial.events == []
