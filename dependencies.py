"""
FastAPI dependencies: shared components from app.state and caller identity.

Identity travels in headers, not in a session:
  X-Account-Id  opaque account id (preferred)
  X-User-Id     user id; hashed into an account id when X-Account-Id is absent
  X-OpenAI-Key  caller's own OpenAI key (BYOK)
"""
import hashlib

from fastapi import Depends, Header, Request
from pydantic import BaseModel

from billing import BillingBridge
from bouncer import Bouncer
from errors import ApiError
from openai_client import TextGenerator
from settings import Settings
from store import Account, AccountStore


class Identity(BaseModel):
    account_id: str = ""
    user_id: str = "anon"


def hashed_account_id(user_id: str) -> str:
    digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
    return f"u_{digest[:32]}"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> AccountStore:
    return request.app.state.store


def get_generator(request: Request) -> TextGenerator:
    return request.app.state.generator


def get_bouncer(request: Request) -> Bouncer:
    return request.app.state.bouncer


def get_billing(request: Request) -> BillingBridge:
    return request.app.state.billing


def get_identity(
    x_account_id: str = Header(default="", max_length=200),
    x_user_id: str = Header(default="", max_length=200),
) -> Identity:
    account_id = (x_account_id or "").strip()
    user_id = (x_user_id or "").strip()
    if not account_id and user_id:
        account_id = hashed_account_id(user_id)
    return Identity(account_id=account_id, user_id=user_id or "anon")


def require_account(
    identity: Identity = Depends(get_identity),
    store: AccountStore = Depends(get_store),
) -> Account:
    if not identity.account_id:
        raise ApiError(400, "missing_account_id")
    return store.get_or_create(identity.account_id, identity.user_id)


def caller_api_key(x_openai_key: str = Header(default="", max_length=300)) -> str:
    return (x_openai_key or "").strip()
