import json
import logging
from typing import Any, Dict, Optional

import stripe

from errors import ApiError
from settings import Settings
from store import Account, AccountStore, now_ms


logger = logging.getLogger("prompt_studio.billing")

# Subscription status -> plan. Statuses in neither set leave the plan alone
# ("incomplete" can arrive before or after checkout.session.completed).
PRO_STATUSES = {"active", "trialing", "past_due", "unpaid"}
FREE_STATUSES = {"canceled", "incomplete_expired", "paused"}

SUBSCRIPTION_EVENTS = {"customer.subscription.created", "customer.subscription.updated"}


# -----------------------------
# Helpers (work on plain dicts and on StripeObjects)
# -----------------------------
def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _id(value: Any) -> str:
    """Stripe fields are either an id string or an expanded object."""
    if not value:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(_field(value, "id") or "").strip()


def _to_ms(seconds: Any) -> int:
    try:
        n = int(seconds or 0)
    except (TypeError, ValueError):
        return 0
    return n * 1000 if n > 0 else 0


def _period_end(sub: Any) -> Any:
    value = _field(sub, "current_period_end")
    if value:
        return value
    # Newer API versions moved the period onto the subscription items.
    items = _field(_field(sub, "items"), "data") or []
    for item in items:
        value = _field(item, "current_period_end")
        if value:
            return value
    return 0


def _metadata_value(obj: Any, *keys: str) -> str:
    metadata = _field(obj, "metadata") or {}
    for key in keys:
        value = _field(metadata, key)
        if value:
            return str(value).strip()
    return ""


def apply_subscription(account: Account, sub: Any) -> None:
    """Copy subscription fields onto the account and derive the plan."""
    account.stripe.subscription_id = _id(sub) or account.stripe.subscription_id
    status = str(_field(sub, "status") or "")
    account.stripe.status = status

    period_end = _period_end(sub)
    account.stripe.current_period_end = _to_ms(period_end)

    cancel_at_period_end = bool(_field(sub, "cancel_at_period_end"))
    account.stripe.cancel_at_period_end = cancel_at_period_end
    account.stripe.cancel_at = _to_ms(_field(sub, "cancel_at") or (period_end if cancel_at_period_end else 0))

    if status in PRO_STATUSES:
        account.plan = "PRO"
    elif status in FREE_STATUSES:
        account.plan = "FREE"


# -----------------------------
# Bridge
# -----------------------------
class BillingBridge:
    def __init__(self, settings: Settings, store: AccountStore):
        self.settings = settings
        self.store = store

    def _require_stripe(self, need_price: bool = False) -> None:
        if not self.settings.stripe_secret_key or (need_price and not self.settings.stripe_price_id):
            raise ApiError(500, "stripe_not_configured")
        stripe.api_key = self.settings.stripe_secret_key

    # ---- Checkout
    def create_checkout_session(self, account: Account, return_base: str) -> Dict[str, Any]:
        self._require_stripe(need_price=True)

        metadata = {"accountId": account.account_id, "userId": account.user_id}
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self.settings.stripe_price_id, "quantity": 1}],
            "success_url": f"{return_base}/checkout-success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{return_base}/checkout-cancel",
            "allow_promotion_codes": True,
            "billing_address_collection": "auto",
            "client_reference_id": account.account_id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if account.stripe.customer_id:
            params["customer"] = account.stripe.customer_id

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Checkout session create failed for %s: %s", account.account_id, e)
            raise ApiError(502, "stripe_error", message=str(e)[:300])

        return {"url": _field(session, "url"), "sessionId": _field(session, "id")}

    def sync_checkout_session(self, account: Account, session_id: str) -> Dict[str, Any]:
        """Fallback for a missed webhook: pull the session and mirror it."""
        self._require_stripe()
        sid = (session_id or "").strip()
        if not sid:
            raise ApiError(400, "missing_session_id")

        try:
            session = stripe.checkout.Session.retrieve(sid, expand=["subscription", "customer"])
        except stripe.StripeError as e:
            logger.error("Checkout session retrieve failed for %s: %s", sid, e)
            raise ApiError(502, "stripe_error", message=str(e)[:300])

        owner = _metadata_value(session, "accountId")
        if owner and owner != account.account_id:
            raise ApiError(403, "session_account_mismatch")

        status = _field(session, "status")
        payment_status = _field(session, "payment_status")
        if status != "complete":
            raise ApiError(409, "checkout_incomplete", status=status, paymentStatus=payment_status)

        customer_id = _id(_field(session, "customer"))
        if customer_id:
            self.store.attach_customer(account, customer_id)

        subscription = _field(session, "subscription")
        if subscription and not isinstance(subscription, str):
            apply_subscription(account, subscription)
        else:
            account.stripe.subscription_id = _id(subscription) or account.stripe.subscription_id
        if account.stripe.status not in FREE_STATUSES:
            account.plan = "PRO"
        self.store.touch(account)

        return {
            "plan": account.plan,
            "customerId": account.stripe.customer_id,
            "subscriptionId": account.stripe.subscription_id,
        }

    # ---- Portal
    def create_portal_session(self, account: Account, return_base: str) -> Dict[str, Any]:
        self._require_stripe()
        if not account.stripe.customer_id:
            raise ApiError(400, "missing_customer_id")

        try:
            portal = stripe.billing_portal.Session.create(
                customer=account.stripe.customer_id,
                return_url=f"{return_base}/?from=billing",
            )
        except stripe.StripeError as e:
            logger.error("Billing portal create failed for %s: %s", account.account_id, e)
            raise ApiError(502, "stripe_error", message=str(e)[:300])

        url = (_field(portal, "url") or "").strip()
        if not url:
            raise ApiError(502, "stripe_error", message="portal session has no url")
        return {"url": url}

    # ---- Webhooks
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        secret = self.settings.stripe_webhook_secret
        if not secret:
            raise ApiError(500, "stripe_not_configured")
        if not signature:
            raise ApiError(400, "missing_signature")
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Webhook signature error: %s", e)
            raise ApiError(400, "invalid_signature")
        return json.loads(payload)

    def _account_for(self, obj: Any, create: bool = False) -> Optional[Account]:
        customer_id = _id(_field(obj, "customer"))
        account_id = _metadata_value(obj, "accountId")

        acc = None
        if account_id:
            acc = self.store.get(account_id)
            if acc is None and create:
                acc = self.store.get_or_create(account_id, _metadata_value(obj, "userId"))
        if acc is None and customer_id:
            acc = self.store.get_by_customer(customer_id)
        if acc is not None and customer_id:
            self.store.attach_customer(acc, customer_id)
        return acc

    def apply_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mirror one Stripe event into the store. Applying the same event twice
        leaves the same state as applying it once.
        """
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            acc = self._account_for(obj, create=True)
        elif event_type in SUBSCRIPTION_EVENTS or event_type == "customer.subscription.deleted":
            acc = self._account_for(obj)
        else:
            return {"ok": True, "ignored": True, "type": event_type}

        if acc is None:
            logger.warning("Webhook %s (%s) matched no account", event_type, event.get("id", ""))
            return {"ok": True, "ignored": True, "type": event_type, "reason": "unknown_account"}

        before = acc.model_dump(exclude={"updated_at"})

        if event_type == "checkout.session.completed":
            subscription_id = _id(_field(obj, "subscription"))
            if subscription_id:
                acc.stripe.subscription_id = subscription_id
            acc.plan = "PRO"
        elif event_type in SUBSCRIPTION_EVENTS:
            apply_subscription(acc, obj)
        else:
            acc.stripe.subscription_id = _id(obj) or acc.stripe.subscription_id
            acc.stripe.status = "canceled"
            acc.stripe.cancel_at_period_end = False
            acc.stripe.cancel_at = _to_ms(_field(obj, "ended_at") or _field(obj, "canceled_at")) or now_ms()
            acc.plan = "FREE"

        changed = acc.model_dump(exclude={"updated_at"}) != before
        if changed:
            self.store.touch(acc)
        logger.info("Webhook %s applied to %s (plan=%s, changed=%s)", event_type, acc.account_id, acc.plan, changed)
        return {"ok": True, "type": event_type, "accountId": acc.account_id, "plan": acc.plan}
