"""
Offline maintenance for the account db file.

    python -m scripts.db_admin show <account_id>
    python -m scripts.db_admin set-plan <account_id> PRO
    python -m scripts.db_admin reset-usage <account_id>

Stop the server first: it rewrites the whole file on its next save.
"""
import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from quota import month_key
from settings import get_settings
from store import AccountStore


def open_store(path: str) -> AccountStore:
    store = AccountStore(path, debounce_seconds=0)
    store.load()
    return store


def show(store: AccountStore, account_id: str) -> Optional[Dict[str, Any]]:
    acc = store.get(account_id)
    return acc.model_dump() if acc else None


def set_plan(store: AccountStore, account_id: str, plan: str) -> Dict[str, Any]:
    plan = plan.strip().upper()
    if plan not in ("FREE", "PRO"):
        raise ValueError(f"bad plan: {plan}")
    acc = store.get_or_create(account_id)
    acc.plan = plan
    store.touch(acc)
    return acc.model_dump()


def reset_usage(store: AccountStore, account_id: str) -> Dict[str, Any]:
    acc = store.get(account_id)
    if acc is None:
        raise KeyError(account_id)
    acc.usage.month_key = month_key()
    acc.usage.used = 0
    acc.usage.boost_used = 0
    acc.usage.last_ts = 0
    store.touch(acc)
    return acc.model_dump()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Prompt Studio account db admin")
    parser.add_argument("--db", default=None, help="db file (default: $DATA_DIR/prompt-studio-db.json)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_show = sub.add_parser("show")
    p_show.add_argument("account_id")

    p_plan = sub.add_parser("set-plan")
    p_plan.add_argument("account_id")
    p_plan.add_argument("plan", choices=["FREE", "PRO", "free", "pro"])

    p_reset = sub.add_parser("reset-usage")
    p_reset.add_argument("account_id")

    args = parser.parse_args(argv)
    store = open_store(args.db or get_settings().db_file)

    if args.command == "show":
        out = show(store, args.account_id)
        if out is None:
            print(f"unknown account: {args.account_id}", file=sys.stderr)
            return 1
    elif args.command == "set-plan":
        out = set_plan(store, args.account_id, args.plan)
    else:
        try:
            out = reset_usage(store, args.account_id)
        except KeyError:
            print(f"unknown account: {args.account_id}", file=sys.stderr)
            return 1

    print(json.dumps(out, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
