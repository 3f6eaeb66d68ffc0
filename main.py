import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing import BillingBridge
from bouncer import Bouncer
from errors import register_error_handlers
from openai_client import TextGenerator
from settings import Settings, get_settings
from store import AccountStore
from routers.account import router as account_router
from routers.checkout import router as checkout_router
from routers.generate import router as generate_router
from routers.stripe_webhook import router as stripe_webhook_router


# =============================================================================
# Prompt Studio API (FastAPI)
# - BYOK, PRO (server key) and optional BYOK_ONLY
# - Monthly quota per plan + boost quota for PRO, optional 24h trial
# - Stripe Checkout / Billing Portal / webhooks, sync via session_id
# - JSON file account store with debounced writes
# - OpenAI Responses API with Chat Completions fallback
# - Bouncer: banned stems scan, bounded rewrites, hard fail 422
# =============================================================================

logger = logging.getLogger("prompt_studio")

ALLOWED_HEADERS = [
    "Content-Type",
    "X-Account-Id",
    "X-User-Id",
    "X-OpenAI-Key",
    "X-Admin-Key",
]


def _origin_regex(suffixes) -> Optional[str]:
    parts = [r"https://[A-Za-z0-9.-]+" + re.escape(s) + r"(:\d+)?" for s in suffixes if s]
    return "|".join(parts) or None


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[AccountStore] = None,
    generator: Optional[TextGenerator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings)

    if store is None:
        store = AccountStore(settings.db_file, settings.save_debounce_seconds, settings.stripe_mode)
        store.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting Prompt Studio API (build=%s, stripe=%s, byok_only=%s, bouncer=%s/%d)",
            settings.build_tag,
            settings.stripe_mode,
            settings.byok_only,
            settings.bouncer_enabled,
            settings.bouncer_max_passes,
        )
        yield
        app.state.store.flush()
        logger.info("Account store flushed, shutting down")

    app = FastAPI(title="Prompt Studio API", version="2.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.generator = generator or TextGenerator(settings.openai_api_base, settings.openai_timeout_seconds)
    app.state.bouncer = Bouncer.from_settings(settings)
    app.state.billing = BillingBridge(settings, store)

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_origin_regex=_origin_regex(settings.allowed_origin_suffixes),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Engine", "X-Build"],
    )

    @app.middleware("http")
    async def block_unknown_origins(request: Request, call_next):
        origin = request.headers.get("origin")
        if origin and not settings.origin_allowed(origin):
            logger.warning("CORS blocked: %s %s from %s", request.method, request.url.path, origin)
            return JSONResponse(
                status_code=403,
                content={"ok": False, "error": "cors_blocked", "message": f"CORS blocked: {origin}"},
            )
        return await call_next(request)

    # -----------------------------
    # Health
    # -----------------------------
    @app.get("/")
    def root():
        return {"ok": True}

    @app.get("/api/health")
    def health():
        return {
            "status": "ok",
            "build": settings.build_tag,
            "byokOnly": settings.byok_only,
            "stripe": bool(settings.stripe_secret_key),
            "stripeMode": settings.stripe_mode,
            "stripePriceId": settings.stripe_price_id,
            "models": {
                "byok": settings.model_byok,
                "pro": settings.model_pro,
                "boost": settings.model_boost,
            },
            "limits": {
                "FREE_LIMIT": settings.free_limit,
                "PRO_LIMIT": settings.pro_limit,
                "PRO_BOOST_LIMIT": settings.pro_boost_limit,
            },
            "trial": {"enabled": settings.trial_enabled, "limit24h": settings.trial_limit_24h},
            "bouncer": {
                "enabled": settings.bouncer_enabled,
                "maxPasses": settings.bouncer_max_passes,
                "stemsCount": len(app.state.bouncer.stems),
            },
            "allowedOrigins": settings.allowed_origins,
        }

    app.include_router(stripe_webhook_router)
    app.include_router(account_router)
    app.include_router(generate_router)
    app.include_router(checkout_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(get_settings().port), reload=False)
