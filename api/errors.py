"""
Error envelope for the HTTP layer.

Core error kinds map to status codes (NOT_FOUND 404, VALIDATION_FAILED
400, UPSTREAM 503). Every error response has the same shape and carries a
trace id, reused from the inbound `x-trace-id` header when present.
"""

import logging
import uuid
from datetime import datetime
from http import HTTPStatus
from typing import Any, Dict, List, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from energy_insights.errors import ErrorKind, InsightsError

logger = logging.getLogger(__name__)

KIND_TO_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.UPSTREAM: 503,
}


def error_envelope(
    request: Request,
    status_code: int,
    message: Union[str, List[str]],
) -> Dict[str, Any]:
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    try:
        error = HTTPStatus(status_code).phrase
    except ValueError:
        error = "Error"
    return {
        "status_code": status_code,
        "error": error,
        "message": message if isinstance(message, list) else [message],
        "timestamp": datetime.utcnow().isoformat(),
        "path": request.url.path,
        "method": request.method,
        "trace_id": trace_id,
    }


def _respond(request: Request, status_code: int, message: Union[str, List[str]]) -> JSONResponse:
    body = error_envelope(request, status_code, message)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"[{body['trace_id']}] {request.method} {request.url.path} - {status_code}: {body['message']}")
    return JSONResponse(status_code=status_code, content=body)


async def insights_error_handler(request: Request, exc: InsightsError) -> JSONResponse:
    return _respond(request, KIND_TO_STATUS.get(exc.kind, 500), exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'request'}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return _respond(request, 400, messages)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _respond(request, exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _respond(request, 500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InsightsError, insights_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
