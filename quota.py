from datetime import datetime, timezone
from typing import Any, Dict, Optional

from errors import ApiError
from settings import Settings
from store import Account


TRIAL_WINDOW_MS = 24 * 60 * 60 * 1000
TRIAL_EVENTS_KEPT = 50


def _now(now: Optional[datetime] = None) -> datetime:
    return now or datetime.now(timezone.utc)


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def month_key(now: Optional[datetime] = None) -> str:
    d = _now(now)
    return f"{d.year:04d}-{d.month:02d}"


def first_day_next_month_ms(now: Optional[datetime] = None) -> int:
    d = _now(now)
    if d.month == 12:
        nxt = datetime(d.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        nxt = datetime(d.year, d.month + 1, 1, tzinfo=timezone.utc)
    return _ms(nxt)


def renew_at(account: Account, now: Optional[datetime] = None) -> int:
    if account.stripe.current_period_end > 0:
        return account.stripe.current_period_end
    return first_day_next_month_ms(now)


def cancel_at(account: Account) -> int:
    return account.stripe.cancel_at if account.stripe.cancel_at > 0 else 0


# -----------------------------
# Monthly bucket
# -----------------------------
def ensure_monthly_bucket(account: Account, now: Optional[datetime] = None) -> bool:
    """Zero the counters when the stored month differs. Returns True on reset."""
    mk = month_key(now)
    if account.usage.month_key == mk:
        return False
    account.usage.month_key = mk
    account.usage.used = 0
    account.usage.boost_used = 0
    account.usage.last_ts = 0
    return True


def check_quota(account: Account, wants_boost: bool, settings: Settings, now: Optional[datetime] = None) -> None:
    """
    Raise ApiError when the account may not generate. Never changes counters
    except for the month rollover reset.
    """
    ensure_monthly_bucket(account, now)
    used = account.usage.used
    limit = settings.limit_for(account.is_pro)

    if used >= limit:
        raise ApiError(429, "quota_reached", used=used, limit=limit, renewAt=renew_at(account, now))

    if not wants_boost:
        return

    if not account.is_pro:
        raise ApiError(402, "boost_requires_pro", message="Boost is available on the PRO plan.")

    if account.usage.boost_used >= settings.pro_boost_limit:
        raise ApiError(
            429,
            "boost_quota_reached",
            boostUsed=account.usage.boost_used,
            boostLimit=settings.pro_boost_limit,
            renewAt=renew_at(account, now),
        )


def mark_usage(account: Account, wants_boost: bool, now: Optional[datetime] = None) -> None:
    ensure_monthly_bucket(account, now)
    account.usage.used += 1
    account.usage.last_ts = _ms(_now(now))
    if wants_boost:
        account.usage.boost_used += 1


# -----------------------------
# Trial (rolling 24h window, optional)
# -----------------------------
def trial_allowed(account: Account, settings: Settings, now: Optional[datetime] = None) -> Dict[str, Any]:
    if not settings.trial_enabled:
        return {"ok": False, "reason": "trial_disabled"}
    if settings.byok_only:
        return {"ok": False, "reason": "byok_only"}
    if not settings.server_openai_key:
        return {"ok": False, "reason": "missing_server_key"}
    if account.is_pro:
        return {"ok": False, "reason": "already_pro"}

    cutoff = _ms(_now(now)) - TRIAL_WINDOW_MS
    fresh = [ts for ts in account.trial.events if ts > cutoff]
    account.trial.events = fresh

    if len(fresh) >= settings.trial_limit_24h:
        return {"ok": False, "reason": "trial_limit_reached", "used": len(fresh), "limit": settings.trial_limit_24h}
    return {"ok": True, "used": len(fresh), "limit": settings.trial_limit_24h}


def mark_trial(account: Account, now: Optional[datetime] = None) -> None:
    account.trial.events.insert(0, _ms(_now(now)))
    del account.trial.events[TRIAL_EVENTS_KEPT:]
