import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from bouncer import Bouncer
from errors import ApiError
from openai_client import TextGenerator
from prompts import GenerateRequest, build_master_prompt, build_repair_prompt
from quota import cancel_at, check_quota, ensure_monthly_bucket, mark_trial, mark_usage, renew_at, trial_allowed
from settings import Settings
from store import Account, AccountStore


logger = logging.getLogger("prompt_studio.generate")

Mode = Literal["BYOK", "PRO_SERVER", "TRIAL_SERVER"]


class EngineChoice(BaseModel):
    mode: Mode
    api_key: str = Field(repr=False)
    model: str  # internal model id, never returned in the body
    label: str  # public engine label


def select_engine(
    settings: Settings,
    account: Account,
    byok_key: str,
    wants_boost: bool,
    now: Optional[datetime] = None,
) -> EngineChoice:
    """
    Pick key source, model and label.

    Caller key wins. Without one, PRO accounts use the server key; everyone
    else may fall back to the trial window when it is enabled.
    """
    if settings.byok_only and not byok_key:
        raise ApiError(400, "byok_required", message="BYOK_ONLY is enabled. Send your key in X-OpenAI-Key.")

    if byok_key:
        if wants_boost:
            model = settings.model_boost
        else:
            model = settings.model_pro if account.is_pro else settings.model_byok
        label = settings.engine_ultra if wants_boost else settings.engine_byok
        return EngineChoice(mode="BYOK", api_key=byok_key, model=model, label=label)

    if account.is_pro and settings.server_openai_key:
        return EngineChoice(
            mode="PRO_SERVER",
            api_key=settings.server_openai_key,
            model=settings.model_boost if wants_boost else settings.model_pro,
            label=settings.engine_ultra if wants_boost else settings.engine_pro,
        )

    trial = trial_allowed(account, settings, now)
    if trial["ok"]:
        return EngineChoice(
            mode="TRIAL_SERVER",
            api_key=settings.server_openai_key,
            model=settings.model_pro,
            label=settings.engine_ultra if wants_boost else settings.engine_trial,
        )

    raise ApiError(
        400,
        "missing_api_key",
        message="No API key set. Start checkout (PRO) or set your OpenAI API key.",
        trial=trial,
        mode="BYOK",
        model=settings.engine_byok,
    )


def usage_summary(account: Account, settings: Settings, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "plan": account.plan,
        "used": account.usage.used,
        "limit": settings.limit_for(account.is_pro),
        "boostUsed": account.usage.boost_used,
        "boostLimit": settings.pro_boost_limit,
        "renewAt": renew_at(account, now),
        "cancelAt": cancel_at(account),
    }


def run_generation(
    req: GenerateRequest,
    account: Account,
    byok_key: str,
    settings: Settings,
    store: AccountStore,
    generator: TextGenerator,
    bouncer: Bouncer,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if req.hp.strip():
        return {"ok": True, "output": "", "plan": account.plan}

    wants_boost = bool(req.boost)
    if ensure_monthly_bucket(account, now):
        store.touch(account)

    choice = select_engine(settings, account, byok_key, wants_boost, now)

    try:
        check_quota(account, wants_boost, settings, now)

        output = generator.generate(choice.api_key, choice.model, build_master_prompt(req), temperature=0.6)

        def rewrite(hits: List[str], bad_output: str) -> str:
            prompt = build_repair_prompt(req, bad_output, hits, bouncer.stems)
            return generator.generate(choice.api_key, choice.model, prompt, temperature=0.0)

        output = bouncer.enforce(output, rewrite, extra=req.extra, lang=req.lang)
    except ApiError as e:
        e.extra.setdefault("mode", choice.mode)
        e.extra.setdefault("model", choice.label)
        logger.info("Generate for %s failed: %s (%s)", account.account_id, e.error, choice.mode)
        raise

    mark_usage(account, wants_boost, now)
    if choice.mode == "TRIAL_SERVER":
        mark_trial(account, now)
    store.touch(account)

    logger.info(
        "Generate for %s ok: mode=%s engine=%s used=%d",
        account.account_id,
        choice.mode,
        choice.label,
        account.usage.used,
    )

    body = {"ok": True, "output": output, "mode": choice.mode, "model": choice.label}
    body.update(usage_summary(account, settings, now))
    return body
