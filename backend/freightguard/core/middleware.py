"""
Request context middleware and the JSON error handlers.

Every response carries X-Request-ID, and every error body carries the same id
so operators can find the matching log lines.
"""
import time
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from freightguard.core.errors import FreightGuardError
from freightguard.core.logging import (
    api_logger,
    generate_request_id,
    get_request_id,
    request_id_var,
    request_start_var,
)

REQUEST_ID_HEADER = 'X-Request-ID'

# Probes are polled constantly; keep them out of the request log
_PROBE_PATHS = frozenset({'/healthz', '/readyz'})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the context and logs one summary line per request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        id_token = request_id_var.set(request_id)
        start_token = request_start_var.set(time.time())
        request.state.request_id = request_id

        path = request.url.path
        summary = f"{request.method} {path}"
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                api_logger.error(f"{summary} unhandled", error=e)
                response = JSONResponse(
                    status_code=500,
                    content={'detail': 'Internal server error', 'request_id': request_id},
                )

            response.headers[REQUEST_ID_HEADER] = request_id
            if path not in _PROBE_PATHS:
                log = api_logger.info if response.status_code < 400 else api_logger.warning
                log(summary, status=response.status_code)
            return response
        finally:
            request_id_var.reset(id_token)
            request_start_var.reset(start_token)


def _error_response(request: Request, status_code: int, body: dict) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'
    body['request_id'] = request_id
    return JSONResponse(status_code=status_code, content=body, headers={REQUEST_ID_HEADER: request_id})


async def freightguard_error_handler(request: Request, exc: FreightGuardError) -> JSONResponse:
    api_logger.warning(exc.code, detail=exc.detail, path=request.url.path, status=exc.status_code)
    return _error_response(request, exc.status_code, {'detail': exc.detail, 'code': exc.code})


async def http_exception_handler(request: Request, exc) -> JSONResponse:
    status_code = getattr(exc, 'status_code', 500)
    detail = getattr(exc, 'detail', 'Unknown error')
    log = api_logger.error if status_code >= 500 else api_logger.warning
    log(f"http_{status_code}", detail=detail, path=request.url.path)
    return _error_response(request, status_code, {'detail': detail})
