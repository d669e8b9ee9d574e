"""Map ledger errors onto HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from loyalty_ledger.core.errors import LoyaltyError

STATUS_BY_KIND: dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_argument": status.HTTP_400_BAD_REQUEST,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "insufficient_balance": status.HTTP_409_CONFLICT,
    "limit_exceeded": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "transactional_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def loyalty_error_handler(request: Request, exc: LoyaltyError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.warning("Loyalty request failed", path=request.url.path, kind=exc.kind, error=exc.message)
    else:
        logger.info("Loyalty request rejected", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.as_dict()})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoyaltyError, loyalty_error_handler)


__all__ = ["STATUS_BY_KIND", "loyalty_error_handler", "register_exception_handlers"]
