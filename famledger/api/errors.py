"""
Ledger error -> HTTP response mapping
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from famledger.domain.errors import (
    LedgerError, KIND_NOT_FOUND, KIND_INVALID_INPUT, KIND_INVARIANT, KIND_CONFLICT, KIND_CONCURRENCY,
)

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    KIND_NOT_FOUND: 404,
    KIND_INVALID_INPUT: 422,
    KIND_INVARIANT: 422,
    KIND_CONFLICT: 409,
    KIND_CONCURRENCY: 503,
}


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    if exc.retryable:
        logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
        headers = {"Retry-After": "1"}
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        headers = None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)
