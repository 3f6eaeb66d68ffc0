import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from dependencies import caller_api_key, get_generator, get_settings, get_store, require_account
from errors import ApiError
from generation import usage_summary
from openai_client import TextGenerator
from quota import ensure_monthly_bucket, month_key
from settings import Settings
from store import Account, AccountStore


logger = logging.getLogger("prompt_studio.account")

router = APIRouter()


# -----------------------------
# Current account
# -----------------------------
@router.get("/api/me")
def me(
    account: Account = Depends(require_account),
    settings: Settings = Depends(get_settings),
    store: AccountStore = Depends(get_store),
):
    if ensure_monthly_bucket(account):
        store.touch(account)

    summary = usage_summary(account, settings)
    return {
        "ok": True,
        "accountId": account.account_id,
        "plan": account.plan,
        "renewAt": summary["renewAt"],
        "cancelAt": summary["cancelAt"],
        "stripe": {
            "mode": account.stripe.mode or settings.stripe_mode,
            "customerId": account.stripe.customer_id,
            "subscriptionId": account.stripe.subscription_id,
            "hasCustomerId": bool(account.stripe.customer_id),
            "status": account.stripe.status,
            "cancelAtPeriodEnd": account.stripe.cancel_at_period_end,
        },
        "usage": {
            "monthKey": account.usage.month_key or month_key(),
            "used": account.usage.used,
            "boostUsed": account.usage.boost_used,
            "lastTs": account.usage.last_ts,
        },
        "limits": {
            "FREE_LIMIT": settings.free_limit,
            "PRO_LIMIT": settings.pro_limit,
            "PRO_BOOST_LIMIT": settings.pro_boost_limit,
        },
    }


# -----------------------------
# BYOK key test
# -----------------------------
class KeyTestRequest(BaseModel):
    apiKey: str = Field(default="", max_length=300)


@router.post("/api/test")
def test_api_key(
    req: Optional[KeyTestRequest] = None,
    header_key: str = Depends(caller_api_key),
    settings: Settings = Depends(get_settings),
    generator: TextGenerator = Depends(get_generator),
):
    key = header_key or (req.apiKey.strip() if req else "")
    if not key:
        raise ApiError(400, "missing_api_key")

    try:
        text = generator.generate(key, settings.model_byok, "ping", temperature=0.0)
    except ApiError as e:
        raise ApiError(400, e.error, message=e.message)
    return {"ok": True, "sample": text[:40]}


# -----------------------------
# Admin: set plan without editing the db file
# -----------------------------
class SetPlanRequest(BaseModel):
    accountId: str = Field(default="", max_length=200)
    plan: str = Field(default="", max_length=10)


def require_admin_key(
    x_admin_key: str = Header(default="", max_length=300),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.admin_key
    if not expected:
        raise ApiError(500, "admin_not_configured")
    if not secrets.compare_digest((x_admin_key or "").strip().encode("utf-8"), expected.encode("utf-8")):
        raise ApiError(401, "unauthorized")


@router.post("/api/admin/set-plan", dependencies=[Depends(require_admin_key)])
def admin_set_plan(req: SetPlanRequest, store: AccountStore = Depends(get_store)):
    account_id = req.accountId.strip()
    plan = req.plan.strip().upper()
    if not account_id:
        raise ApiError(400, "missing_account_id")
    if plan not in ("FREE", "PRO"):
        raise ApiError(400, "bad_plan")

    account = store.get(account_id) or store.get_or_create(account_id)
    account.plan = plan
    store.touch(account)
    logger.info("Admin set plan of %s to %s", account_id, plan)
    return {"ok": True, "accountId": account_id, "plan": plan}
