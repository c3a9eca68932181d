from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clubhouse.core.errors import (
    CredentialError,
    EmailAlreadyRegistered,
    RegistrationError,
    TenantMismatch,
    UnknownOrganization,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def error_payload(code: str, message: str) -> dict[str, Any]:
    return {"detail": {"code": code, "message": message}}


async def credential_exception_handler(request: Request, exc: CredentialError) -> JSONResponse:
    # Every credential failure looks identical to clients; the kind stays in the logs.
    logger.info("credential_rejected reason=%s path=%s", exc.reason, request.url.path)
    return JSONResponse(
        content=error_payload("AUTH_UNAUTHORIZED", "Invalid credentials"),
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def tenant_mismatch_exception_handler(request: Request, exc: TenantMismatch) -> JSONResponse:
    logger.warning(
        "tenant_mismatch location=%s key=%s path=%s",
        exc.location,
        exc.key,
        request.url.path,
    )
    return JSONResponse(content=error_payload("TENANT_MISMATCH", str(exc)), status_code=403)


async def registration_exception_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    if isinstance(exc, EmailAlreadyRegistered):
        return JSONResponse(content=error_payload("EMAIL_ALREADY_REGISTERED", str(exc)), status_code=409)
    if isinstance(exc, UnknownOrganization):
        return JSONResponse(content=error_payload("ORGANIZATION_NOT_FOUND", str(exc)), status_code=400)
    return JSONResponse(content=error_payload("BAD_REQUEST", str(exc)), status_code=400)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Normalize string details into the shared code/message shape.
    detail = exc.detail
    if not isinstance(detail, dict):
        detail = {"code": _default_code(exc.status_code), "message": str(detail)}
    return JSONResponse(content={"detail": detail}, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(content={"detail": jsonable_encoder(exc.errors())}, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return JSONResponse(content=error_payload("INTERNAL_ERROR", "Internal server error"), status_code=500)
