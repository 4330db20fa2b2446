"""API routes for running the legacy data migration."""

import logging

from fastapi import APIRouter, Request

from safetube.api._helpers import _get_migration_service, fail, ok
from safetube.services.error_handler import DatabaseErrorKind, StorageError
from safetube.services.migration import MigrationInProgressError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/migration", tags=["migration"])

IN_PROGRESS_CODE = "migration_in_progress"


def _already_running():
    return fail(
        "A migration phase is already in progress",
        IN_PROGRESS_CODE,
        status_code=409,
    )


def _phase_failure(phase: str, e: Exception):
    if isinstance(e, MigrationInProgressError):
        return _already_running()
    logger.error("Migration %s could not run: %s", phase, e)
    # Engine errors keep their classified kind; backup and other
    # phase-level failures are reported as migration failures.
    if isinstance(e, StorageError):
        return fail(e)
    return fail(e, DatabaseErrorKind.MIGRATION_FAILED)


@router.post("/phase1")
async def run_phase1(request: Request):
    """Back up the legacy documents and migrate catalog and watch data."""
    service = _get_migration_service(request)
    if service.is_running:
        return _already_running()
    try:
        summary = await service.run_phase1()
    except Exception as e:
        return _phase_failure("phase1", e)
    return ok(summary)


@router.post("/phase2")
async def run_phase2(request: Request):
    """Migrate usage logs, time limits, extras and settings."""
    service = _get_migration_service(request)
    if service.is_running:
        return _already_running()
    try:
        summary = await service.run_phase2()
    except Exception as e:
        return _phase_failure("phase2", e)
    return ok(summary)


@router.get("/summary")
async def get_last_summary(request: Request):
    """Return the summary of the most recent phase run, if any."""
    service = _get_migration_service(request)
    return ok(service.last_summary)


@router.get("/integrity")
async def verify_integrity(request: Request):
    service = _get_migration_service(request)
    return ok(await service.verify_integrity())
