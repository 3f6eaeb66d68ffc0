from fastapi import APIRouter, Depends, Response

from bouncer import Bouncer
from dependencies import caller_api_key, get_bouncer, get_generator, get_settings, get_store, require_account
from generation import run_generation
from openai_client import TextGenerator
from prompts import GenerateRequest
from settings import Settings
from store import Account, AccountStore


router = APIRouter()


@router.post("/api/generate")
def generate(
    req: GenerateRequest,
    response: Response,
    account: Account = Depends(require_account),
    header_key: str = Depends(caller_api_key),
    settings: Settings = Depends(get_settings),
    store: AccountStore = Depends(get_store),
    generator: TextGenerator = Depends(get_generator),
    bouncer: Bouncer = Depends(get_bouncer),
):
    response.headers["X-Build"] = settings.build_tag

    byok_key = header_key or req.apiKey.strip()
    body = run_generation(req, account, byok_key, settings, store, generator, bouncer)

    if body.get("model"):
        response.headers["X-Engine"] = body["model"]
    return body
