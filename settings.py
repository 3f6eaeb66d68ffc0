import os
from typing import List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv


# =============================================================================
# Prompt Studio settings (environment driven)
# =============================================================================

load_dotenv()

DB_FILENAME = "prompt-studio-db.json"

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _bool_env(name: str, default: str = "0") -> bool:
    raw = _env(name, default) or ""
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)) or default)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)) or default)
    except ValueError:
        return default


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


class Settings:
    """
    Snapshot of the process environment.

    Built once at startup by create_app(); tests build their own instance and
    override attributes directly.
    """

    def __init__(self) -> None:
        # Storage
        self.data_dir = _env("DATA_DIR") or os.path.join(os.getcwd(), "data")
        self.save_debounce_seconds = max(0.0, _float_env("SAVE_DEBOUNCE_SECONDS", 0.25))

        # OpenAI
        self.byok_only = _bool_env("BYOK_ONLY")
        self.openai_api_base = (_env("OPENAI_API_BASE") or "https://api.openai.com/v1").rstrip("/")
        self.server_openai_key = _env("OPENAI_API_KEY_SERVER") or _env("OPENAI_API_KEY") or ""
        self.openai_timeout_seconds = _float_env("OPENAI_TIMEOUT_SECONDS", 60.0)

        # Internal model ids (never shown to users)
        self.model_byok = _env("MODEL_BYOK", "gpt-4o-mini")
        self.model_pro = _env("MODEL_PRO", "gpt-4o")
        self.model_boost = _env("MODEL_BOOST", "gpt-4o")

        # Public engine labels
        self.engine_byok = _env("ENGINE_BYOK", "Studio Core (BYOK)")
        self.engine_pro = _env("ENGINE_PRO", "Studio Core (Active)")
        self.engine_trial = _env("ENGINE_TRIAL", "Studio Core (Trial)")
        self.engine_ultra = _env("ENGINE_ULTRA", "High-Density Engine (Ultra)")

        # Limits / trial
        self.free_limit = _int_env("FREE_LIMIT", 25)
        self.pro_limit = _int_env("PRO_LIMIT", 250)
        self.pro_boost_limit = _int_env("PRO_BOOST_LIMIT", 50)
        self.trial_enabled = _bool_env("TRIAL_ENABLED")
        self.trial_limit_24h = _int_env("TRIAL_LIMIT_24H", 3)

        # Bouncer
        self.bouncer_enabled = _bool_env("BOUNCER_ENABLED")
        self.bouncer_max_passes = min(3, max(0, _int_env("BOUNCER_MAX_PASSES", 0)))
        self.bouncer_banned_stems = _split_csv(_env("BOUNCER_BANNED_STEMS"))

        # Ops
        self.maintenance_mode = _bool_env("MAINTENANCE_MODE")
        self.admin_key = _env("ADMIN_KEY", "")
        self.build_tag = _env("BUILD_TAG", "dev")
        self.port = _int_env("PORT", 3002)
        self.log_level = (_env("LOG_LEVEL", "INFO") or "INFO").upper()

        # Stripe
        self.stripe_secret_key = _env("STRIPE_SECRET_KEY", "")
        self.stripe_price_id = _env("STRIPE_PRICE_ID", "")
        self.stripe_webhook_secret = _env("STRIPE_WEBHOOK_SECRET", "")

        self.frontend_url = (_env("FRONTEND_URL") or "http://localhost:5173").rstrip("/")
        self.stripe_return_url = (_env("STRIPE_RETURN_URL") or self.frontend_url).rstrip("/")

        # CORS
        origins = [self.frontend_url] + DEFAULT_ORIGINS + _split_csv(_env("CORS_ORIGINS"))
        self.allowed_origins = []
        for origin in origins:
            origin = origin.rstrip("/")
            if origin and origin != "*" and origin not in self.allowed_origins:
                self.allowed_origins.append(origin)
        self.allowed_origin_suffixes = [
            "." + s.lstrip(".") for s in _split_csv(_env("CORS_ORIGIN_SUFFIXES", ".vercel.app")) if s.lstrip(".")
        ]

    @property
    def db_file(self) -> str:
        return os.path.join(self.data_dir, DB_FILENAME)

    @property
    def stripe_mode(self) -> str:
        if not self.stripe_secret_key:
            return "DISABLED"
        return "LIVE" if self.stripe_secret_key.startswith("sk_live") else "TEST"

    def origin_allowed(self, origin: Optional[str]) -> bool:
        origin = (origin or "").strip().rstrip("/")
        if not origin:
            # curl / server-to-server
            return True
        if origin in self.allowed_origins:
            return True
        try:
            parsed = urlparse(origin)
        except ValueError:
            return False
        if parsed.scheme != "https" or not parsed.hostname:
            return False
        return any(parsed.hostname.endswith(suffix) for suffix in self.allowed_origin_suffixes)

    def limit_for(self, is_pro: bool) -> int:
        return self.pro_limit if is_pro else self.free_limit


def get_settings() -> Settings:
    return Settings()
