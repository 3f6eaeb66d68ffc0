from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from billing import BillingBridge
from dependencies import get_billing, get_settings, require_account
from errors import ApiError, maintenance_error
from settings import Settings
from store import Account


class SyncCheckoutRequest(BaseModel):
    sessionId: str = Field(default="", max_length=300)


def billing_available(settings: Settings = Depends(get_settings)) -> None:
    if settings.maintenance_mode:
        raise maintenance_error()
    if not settings.stripe_secret_key:
        raise ApiError(500, "stripe_not_configured")


router = APIRouter(dependencies=[Depends(billing_available)])


def return_base(request: Request, settings: Settings) -> str:
    """Send the customer back to the origin they came from when it is allowed."""
    origin = (request.headers.get("origin", "") or "").strip()
    if origin and settings.origin_allowed(origin):
        return origin.rstrip("/")
    return settings.stripe_return_url


@router.post("/api/create-checkout-session")
def create_checkout_session(
    request: Request,
    settings: Settings = Depends(get_settings),
    billing: BillingBridge = Depends(get_billing),
    account: Account = Depends(require_account),
):
    session = billing.create_checkout_session(account, return_base(request, settings))
    return {"ok": True, **session}


@router.post("/api/sync-checkout-session")
def sync_checkout_session(
    req: SyncCheckoutRequest,
    billing: BillingBridge = Depends(get_billing),
    account: Account = Depends(require_account),
):
    result = billing.sync_checkout_session(account, req.sessionId)
    return {"ok": True, **result}


@router.post("/api/billing-portal")
@router.post("/api/create-portal-session")
def billing_portal(
    request: Request,
    settings: Settings = Depends(get_settings),
    billing: BillingBridge = Depends(get_billing),
    account: Account = Depends(require_account),
):
    portal = billing.create_portal_session(account, return_base(request, settings))
    return {"ok": True, **portal}
