import logging
from typing import Any, Callable, Dict, Optional

import openai
from openai import OpenAI

from errors import ApiError
from prompts import SYSTEM_CHAT


logger = logging.getLogger("prompt_studio.openai")


def _message(exc: Exception) -> str:
    return str(getattr(exc, "message", "") or exc)[:300]


class TextGenerator:
    """
    Thin wrapper over the OpenAI SDK.

    Tries the Responses API first and falls back to Chat Completions when the
    endpoint answers 404 (older proxies / compatible servers). Errors are mapped
    to ApiError tags; nothing is retried.
    """

    def __init__(self, base_url: str, timeout: float = 60.0, client_factory: Callable[..., Any] = OpenAI):
        self.base_url = base_url
        self.timeout = timeout
        self.client_factory = client_factory

    def _client(self, api_key: str):
        return self.client_factory(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def _responses(self, client, model: str, prompt: str, temperature: Optional[float]) -> str:
        kwargs: Dict[str, Any] = {"model": model, "input": prompt}
        if temperature is not None:
            kwargs["temperature"] = temperature
        resp = client.responses.create(**kwargs)
        return (getattr(resp, "output_text", "") or "").strip()

    def _chat(self, client, model: str, prompt: str, temperature: Optional[float]) -> str:
        completion = client.chat.completions.create(
            model=model,
            temperature=0.6 if temperature is None else temperature,
            messages=[
                {"role": "system", "content": SYSTEM_CHAT},
                {"role": "user", "content": prompt},
            ],
        )
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()

    def generate(self, api_key: str, model: str, prompt: str, temperature: Optional[float] = None) -> str:
        key = (api_key or "").strip()
        if not key:
            raise ApiError(400, "missing_api_key")

        try:
            with self._client(key) as client:
                try:
                    text = self._responses(client, model, prompt, temperature)
                except openai.NotFoundError:
                    logger.info("Responses API not found at %s, using chat completions", self.base_url)
                    text = self._chat(client, model, prompt, temperature)
        except openai.AuthenticationError as e:
            raise ApiError(401, "invalid_api_key", message=_message(e))
        except openai.RateLimitError as e:
            raise ApiError(429, "openai_quota_exceeded", message=_message(e))
        except openai.APIStatusError as e:
            logger.error("OpenAI error %s: %s", e.status_code, _message(e))
            raise ApiError(502, "upstream_error", message=_message(e), upstreamStatus=e.status_code)
        except openai.APIError as e:
            logger.error("OpenAI unreachable: %s", _message(e))
            raise ApiError(502, "upstream_error", message=_message(e))

        if not text:
            raise ApiError(502, "no_text_returned")
        return text
