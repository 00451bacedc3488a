"""RFC 7807 rendering of workflow errors."""
from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import Request
from fastapi.responses import JSONResponse

from .domain_errors import DomainError

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://api.orderflow.local/problems"
PROBLEM_MEDIA_TYPE = "application/problem+json"


def problem_title(http_status: int) -> str:
    try:
        return HTTPStatus(http_status).phrase
    except ValueError:
        return "Workflow Error"


def build_problem_details_response(exc: DomainError, *, instance: str | None = None) -> JSONResponse:
    """Serialize a DomainError; `code` stays stable across message rewording."""
    payload: dict[str, object] = {
        "type": f"{PROBLEM_TYPE_BASE}/{exc.code.lower()}",
        "title": problem_title(exc.http_status),
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance:
        payload["instance"] = instance
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(status_code=exc.http_status, content=payload, media_type=PROBLEM_MEDIA_TYPE)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    # Conflicts mean two callers disagreed about the same natural key.
    if exc.http_status == HTTPStatus.CONFLICT:
        logger.warning("Workflow conflict on %s: %s %s", request.url.path, exc.code, exc.details)
    return build_problem_details_response(exc, instance=request.url.path)
