"""
api/responses.py -- Uniform response envelope.

Every endpoint answers with one of two shapes:
    success(...) -> {"success": true,  "message": ..., "data": ...}
    failure(...) -> {"success": false, "message": ..., "errors": ...}

Routes build responses through these helpers (rather than returning models)
because the after-hooks need a concrete Response object to inspect or
replace.
"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.models import FailureResponse, SuccessResponse
from verification.errors import AuthError, RateLimitExceeded


def success(data: Any = None, message: str = "Operation successful", status_code: int = 200) -> JSONResponse:
    body = SuccessResponse(message=message, data=jsonable_encoder(data))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def failure(message: str = "Operation failed", status_code: int = 400, errors: Any = None) -> JSONResponse:
    body = FailureResponse(message=message, errors=errors if errors is not None else [])
    return JSONResponse(status_code=status_code, content=body.model_dump())


def from_error(exc: AuthError) -> JSONResponse:
    """Render a domain error, adding Retry-After for rate limits."""
    resp = failure(exc.message, exc.status_code, exc.errors)
    if isinstance(exc, RateLimitExceeded):
        resp.headers["Retry-After"] = str(exc.retry_after)
    return resp
