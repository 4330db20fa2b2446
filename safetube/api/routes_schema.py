"""API routes for schema initialization and validation."""

import logging

from fastapi import APIRouter, Request

from safetube.api._helpers import _get_schema_manager, fail, ok
from safetube.database_schema import PHASES
from safetube.services.error_handler import DatabaseErrorKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schema", tags=["schema"])


def _unknown_phase(phase: str):
    return fail(
        f"Unknown schema phase: {phase}",
        DatabaseErrorKind.VALIDATION_FAILED,
        status_code=400,
    )


@router.get("")
async def get_schema_version(request: Request):
    """Return the stored schema version, or null before initialization."""
    manager = _get_schema_manager(request)
    try:
        version = await manager.get_current_version()
    except Exception as e:
        return fail(e)
    return ok(version)


@router.post("/{phase}")
async def initialize_schema(phase: str, request: Request):
    """Create every table and index up to *phase*."""
    if phase not in PHASES:
        return _unknown_phase(phase)
    manager = _get_schema_manager(request)
    try:
        await manager.ensure_initialized(phase)
        version = await manager.get_current_version()
    except Exception as e:
        logger.error("Schema initialization to %s failed: %s", phase, e)
        return fail(e)
    return ok(version)


@router.get("/{phase}/validate")
async def validate_schema(phase: str, request: Request):
    if phase not in PHASES:
        return _unknown_phase(phase)
    manager = _get_schema_manager(request)
    return ok(await manager.validate(phase))
