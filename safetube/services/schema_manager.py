"""Schema creation, version tracking and validation."""

import logging
from datetime import datetime, timezone

from safetube.database import Database
from safetube.database_schema import (
    PHASES,
    PHASE_VERSIONS,
    indexes_through,
    phases_through,
    statements_through,
    tables_through,
)
from safetube.models.schemas import SchemaValidationResult, SchemaVersion

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SchemaManager:
    """Creates and inspects the schema for a given phase."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_current_version(self) -> SchemaVersion | None:
        exists = await self.db.fetchval(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if exists is None:
            return None
        row = await self.db.fetchone(
            "SELECT version, phase, updated_at FROM schema_version WHERE id = 1"
        )
        if row is None:
            return None
        return SchemaVersion(**row)

    async def ensure_initialized(self, phase: str) -> None:
        """Bring the schema up to *phase*.

        No-op when the stored phase is *phase* or later. Otherwise every
        statement for the phases through *phase* and the version stamp are
        applied in a single transaction.
        """
        wanted = phases_through(phase)
        current = await self.get_current_version()
        if current is not None and current.phase in PHASES:
            if PHASES.index(current.phase) >= PHASES.index(phase):
                logger.debug(
                    "Schema already at %s (requested %s)", current.phase, phase
                )
                return

        logger.info(
            "Initializing schema to %s (current: %s)",
            phase, current.phase if current else "none",
        )
        statements = [(sql, ()) for sql in statements_through(phase)]
        statements.append(
            (
                "INSERT OR REPLACE INTO schema_version (id, version, phase, updated_at) "
                "VALUES (1, ?, ?, ?)",
                (PHASE_VERSIONS[phase], phase, _now_iso()),
            )
        )
        count = await self.db.run_transaction(statements)
        logger.info(
            "Schema initialized to %s (%d phase(s), %d statements)",
            phase, len(wanted), count,
        )

    async def validate(self, expected_phase: str) -> SchemaValidationResult:
        """Check that every table and index for *expected_phase* exists."""
        result = SchemaValidationResult(is_valid=False)
        try:
            tables = set(await self.db.table_names())
            indexes = set(await self.db.index_names())

            result.missing_tables = [
                t for t in tables_through(expected_phase) if t not in tables
            ]
            result.missing_indexes = [
                i for i in indexes_through(expected_phase) if i not in indexes
            ]
            for name in result.missing_tables:
                result.errors.append(f"Missing table: {name}")
            for name in result.missing_indexes:
                result.errors.append(f"Missing index: {name}")

            violations = await self.db.fetchall("PRAGMA foreign_key_check")
            result.foreign_key_violations = violations
            if violations:
                result.errors.append(
                    f"Foreign key violations found: {len(violations)}"
                )

            current = await self.get_current_version()
            result.phase = current.phase if current else None
            result.phase_matches = result.phase == expected_phase
            if not result.phase_matches:
                result.errors.append(
                    f"Schema phase mismatch: expected {expected_phase}, "
                    f"found {result.phase or 'none'}"
                )
        except Exception as e:
            logger.error("Schema validation failed: %s", e)
            result.errors.append(f"Validation error: {e}")

        result.is_valid = not result.errors
        if not result.is_valid:
            logger.warning(
                "Schema validation for %s found %d problem(s)",
                expected_phase, len(result.errors),
            )
        return result

    async def drop_all(self) -> None:
        """Drop every user table. Intended for test teardown."""
        await self.db.execute("PRAGMA foreign_keys=OFF")
        try:
            async with self.db.transaction():
                virtual = await self.db.fetchall(
                    "SELECT name FROM sqlite_master "
                    "WHERE type='table' AND sql LIKE 'CREATE VIRTUAL TABLE%'"
                )
                for row in virtual:
                    await self.db.execute(f'DROP TABLE IF EXISTS "{row["name"]}"')
                for name in await self.db.table_names():
                    await self.db.execute(f'DROP TABLE IF EXISTS "{name}"')
        finally:
            await self.db.execute("PRAGMA foreign_keys=ON")
        logger.info("Dropped all tables")

    async def foreign_keys_enabled(self) -> bool:
        return await self.db.foreign_keys_enabled()
