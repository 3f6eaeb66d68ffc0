from fastapi import APIRouter, Depends, Request

from billing import BillingBridge
from dependencies import get_billing


router = APIRouter()


@router.post("/api/stripe-webhook")
async def stripe_webhook(request: Request, billing: BillingBridge = Depends(get_billing)):
    """
    Stripe webhook handler:
      - verify signature on the raw body
      - checkout.session.completed       -> PRO, link customer to account
      - customer.subscription.created/updated -> plan follows status
      - customer.subscription.deleted    -> FREE
    Everything else is acknowledged and ignored.
    """
    payload = await request.body()
    signature = (request.headers.get("stripe-signature", "") or "").strip()

    event = billing.construct_event(payload, signature)
    return billing.apply_event(event)
