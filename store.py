import json
import logging
import os
import threading
import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError


logger = logging.getLogger("prompt_studio.store")

Plan = Literal["FREE", "PRO"]


def now_ms() -> int:
    return int(time.time() * 1000)


# -----------------------------
# Records
# -----------------------------
class Usage(BaseModel):
    month_key: str = ""
    used: int = 0
    boost_used: int = 0
    last_ts: int = 0


class StripeInfo(BaseModel):
    mode: str = "DISABLED"
    customer_id: str = ""
    subscription_id: str = ""
    status: str = ""
    current_period_end: int = 0  # epoch ms
    cancel_at: int = 0  # epoch ms
    cancel_at_period_end: bool = False


class Trial(BaseModel):
    events: List[int] = Field(default_factory=list)  # newest first


class Account(BaseModel):
    account_id: str
    user_id: str = "anon"
    created_at: int = 0
    updated_at: int = 0
    plan: Plan = "FREE"
    usage: Usage = Field(default_factory=Usage)
    stripe: StripeInfo = Field(default_factory=StripeInfo)
    trial: Trial = Field(default_factory=Trial)

    @property
    def is_pro(self) -> bool:
        return self.plan == "PRO"


# -----------------------------
# Store (JSON file, debounced writes)
# -----------------------------
class AccountStore:
    """
    In-memory account table mirrored to one JSON document.

    Writes are coalesced: every mutation calls schedule_save(), and at most one
    write is pending at a time. The file is replaced atomically via a .tmp file.
    With path=None nothing touches the disk.
    """

    def __init__(self, path: Optional[str] = None, debounce_seconds: float = 0.25, stripe_mode: str = "DISABLED"):
        self.path = path
        self.debounce_seconds = debounce_seconds
        self.stripe_mode = stripe_mode
        self.accounts: Dict[str, Account] = {}
        self.customers: Dict[str, str] = {}  # stripe customer id -> account id
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()  # one writer owns the .tmp file at a time
        self._timer: Optional[threading.Timer] = None

    # ---- persistence
    def load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f) or {}
        except (OSError, ValueError):
            logger.exception("DB load error: %s", self.path)
            return
        if not isinstance(raw, dict):
            logger.error("DB load error: %s is not a JSON object", self.path)
            return

        accounts: Dict[str, Account] = {}
        for account_id, data in (raw.get("accounts") or {}).items():
            try:
                accounts[account_id] = Account.model_validate(data)
            except ValidationError:
                logger.warning("Skipping unreadable account record: %s", account_id)

        customers = {
            str(cid): str(aid)
            for cid, aid in (raw.get("customers") or {}).items()
            if cid and aid in accounts
        }

        with self._lock:
            self.accounts = accounts
            self.customers = customers
        logger.info("Loaded %d accounts from %s", len(accounts), self.path)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "accounts": {aid: acc.model_dump() for aid, acc in self.accounts.items()},
                "customers": dict(self.customers),
            }

    def schedule_save(self) -> None:
        if not self.path:
            return
        if self.debounce_seconds <= 0:
            self._write()
            return
        with self._lock:
            if self._timer is not None:
                return
            self._timer = threading.Timer(self.debounce_seconds, self._on_timer)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._write()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self._write()

    def _write(self) -> None:
        if not self.path:
            return
        tmp = f"{self.path}.tmp"
        with self._write_lock:
            snapshot = self.to_dict()
            try:
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(snapshot, f, indent=2)
                os.replace(tmp, self.path)
            except OSError:
                logger.exception("DB save error: %s", self.path)

    # ---- accounts
    def get(self, account_id: str) -> Optional[Account]:
        return self.accounts.get((account_id or "").strip())

    def get_or_create(self, account_id: str, user_id: str = "") -> Account:
        aid = (account_id or "").strip()
        uid = (user_id or "").strip() or "anon"
        if not aid:
            raise ValueError("missing_account_id")

        changed = False
        with self._lock:
            acc = self.accounts.get(aid)
            if acc is None:
                ts = now_ms()
                acc = Account(
                    account_id=aid,
                    user_id=uid,
                    created_at=ts,
                    updated_at=ts,
                    stripe=StripeInfo(mode=self.stripe_mode),
                )
                self.accounts[aid] = acc
                changed = True
            elif uid != "anon" and acc.user_id != uid:
                acc.user_id = uid
                changed = True
        # saves take the write lock, never while holding _lock
        if changed:
            self.schedule_save()
        return acc

    def get_by_customer(self, customer_id: str) -> Optional[Account]:
        aid = self.customers.get((customer_id or "").strip())
        if not aid:
            return None
        return self.accounts.get(aid)

    def attach_customer(self, account: Account, customer_id: str) -> None:
        cid = (customer_id or "").strip()
        if not cid:
            return
        if account.stripe.customer_id == cid and self.customers.get(cid) == account.account_id:
            return
        with self._lock:
            account.stripe.customer_id = cid
            self.customers[cid] = account.account_id
        self.touch(account)

    def touch(self, account: Account) -> None:
        account.updated_at = now_ms()
        self.schedule_save()
