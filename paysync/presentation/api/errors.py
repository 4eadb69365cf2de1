import logging
from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ...domain.errors import (
    AuthRequired,
    BadSignature,
    Forbidden,
    InvalidRequest,
    MalformedPayload,
    NotConfigured,
    NotFound,
    PaysyncError,
    ProcessorError,
    StoreError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: Dict[Type[PaysyncError], int] = {
    AuthRequired: 401,
    Forbidden: 403,
    NotFound: 404,
    NotConfigured: 422,
    InvalidRequest: 400,
    BadSignature: 400,
    MalformedPayload: 400,
    ProcessorError: 502,
    StoreError: 503,
}


def status_for(exc: PaysyncError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return 500


async def _handle_paysync_error(request: Request, exc: PaysyncError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, code, exc)
    return JSONResponse(status_code=code, content={"error": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaysyncError, _handle_paysync_error)
