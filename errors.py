import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger("prompt_studio.errors")


class ApiError(HTTPException):
    """
    HTTPException with a machine-readable error tag.

    Rendered as {"ok": false, "error": <tag>, "message": ..., **extra}.
    """

    def __init__(
        self,
        status_code: int,
        error: str,
        message: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ) -> None:
        super().__init__(status_code=status_code, detail=error, headers=headers)
        self.error = error
        self.message = message
        self.extra = {k: v for k, v in extra.items() if v is not None}

    def body(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": False, "error": self.error}
        if self.message:
            out["message"] = self.message
        out.update(self.extra)
        return out


def maintenance_error() -> ApiError:
    return ApiError(
        503,
        "maintenance",
        message="Billing disabled during maintenance.",
        headers={"Retry-After": "3600"},
    )


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        content: Dict[str, Any] = {"ok": False, "error": detail}
    else:
        content = {"ok": False, "error": "http_error", "detail": detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"ok": False, "error": "invalid_request", "details": jsonable_encoder(exc.errors())},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": "internal_error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
