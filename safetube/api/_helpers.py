"""Shared helpers for the API routes: service lookup and response envelope."""

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from safetube.services.error_handler import DatabaseErrorKind, classify_error
from safetube.services.migration import MigrationService
from safetube.services.schema_manager import SchemaManager

logger = logging.getLogger(__name__)


def _get_migration_service(request: Request) -> MigrationService:
    return request.app.state.migration_service


def _get_schema_manager(request: Request) -> SchemaManager:
    return request.app.state.schema_manager


def ok(data: Any) -> dict:
    """Success envelope ``{"success": true, "data": ...}``."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"success": True, "data": data}


def fail(
    error: BaseException | str,
    code: DatabaseErrorKind | str | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Failure envelope ``{"success": false, "error": ..., "code": ...}``.

    When *code* is omitted it is derived by classifying *error*.
    """
    if isinstance(error, BaseException):
        classified = classify_error(error)
        message = classified.message
        code = code or classified.kind
    else:
        message = error
        code = code or DatabaseErrorKind.UNKNOWN
    if isinstance(code, DatabaseErrorKind):
        code = code.value
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code},
    )
