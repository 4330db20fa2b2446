"""Legacy JSON to SQLite migration.

Each phase runs an ordered list of units. A unit loads one legacy document
(or a small group of them), transforms it into rows, and writes those rows
in a single transaction wrapped in the retry policy. A failed unit is
recorded in the phase summary and the remaining units still run.

Usage:
    service = MigrationService(db, SchemaManager(db), loader, settings.DATA_DIR)
    summary = await service.run_phase1()
    integrity = await service.verify_integrity()
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from safetube.config import settings
from safetube.database import Database, Statement
from safetube.database_schema import LOCAL_SOURCE_TYPES, REMOTE_SOURCE_TYPES
from safetube.models.schemas import (
    IntegrityResult,
    PhaseSummary,
    TableCount,
    UnitStatus,
)
from safetube.services.backup import create_backup
from safetube.services.error_handler import (
    RetryOptions,
    execute_with_retry,
    recovery_suggestions,
)
from safetube.services.legacy_loader import LegacyDocumentLoader
from safetube.services.queries import (
    SET_SETTING_SQL,
    UPSERT_SOURCE_SQL,
    UPSERT_VIDEO_SQL,
    UPSERT_VIEW_RECORD_SQL,
    setting_params,
)
from safetube.services.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE_ID = "unknown"
LOCAL_VIDEO_PREFIX = "local:"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# namespace -> loader method name
SETTINGS_DOCUMENTS: tuple[tuple[str, str], ...] = (
    ("main", "load_main_settings"),
    ("pagination", "load_pagination_settings"),
    ("youtubePlayer", "load_player_settings"),
)


class MigrationInProgressError(RuntimeError):
    pass


UnitFn = Callable[[], Awaitable[int]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _favorite_entries(document: Any) -> list:
    """Favorites are either a bare list or wrapped as ``{"favorites": [...]}``."""
    if isinstance(document, dict):
        return _as_list(document.get("favorites"))
    return _as_list(document)


def _watch_entries(document: Any) -> list:
    """Watch history entries that name a video; the rest cannot be stored."""
    return [e for e in _as_list(document) if isinstance(e, dict) and e.get("videoId")]


# ---------------------------------------------------------------------------
# Row transforms
# ---------------------------------------------------------------------------


def source_row(entry: dict, index: int) -> tuple:
    """Map a videoSources.json entry onto a ``sources`` row.

    Only the locator that belongs to the source type is kept: local sources
    keep ``path``, remote ones keep ``url``, the virtual favorites source
    keeps neither.
    """
    kind = entry.get("type")
    url = entry.get("url") or None
    path = entry.get("path") or None
    if kind in LOCAL_SOURCE_TYPES:
        url = None
    elif kind in REMOTE_SOURCE_TYPES:
        path = None
    else:
        url = path = None

    position = entry.get("position")
    if position is None:
        position = index + 1

    # Column order of UPSERT_SOURCE_SQL; total_videos is unknown here
    return (
        entry.get("id"),
        kind,
        entry.get("title") or entry.get("id"),
        url,
        entry.get("thumbnail") or None,
        entry.get("channelId") or None,
        path,
        entry.get("sortPreference") or entry.get("sortOrder") or None,
        position,
        None,
        entry.get("maxDepth") if kind in LOCAL_SOURCE_TYPES else None,
    )


def video_rows(watched: list) -> list[tuple]:
    """Unique videos from the watch history; the first entry for an id wins."""
    seen: dict[str, tuple] = {}
    for entry in watched:
        video_id = entry.get("videoId")
        if not video_id or video_id in seen:
            continue
        seen[video_id] = (
            video_id,
            entry.get("title") or "",
            None,
            entry.get("thumbnail") or None,
            entry.get("duration") or None,
            video_id if video_id.startswith(LOCAL_VIDEO_PREFIX) else None,
            1,
            None,
            entry.get("source") or UNKNOWN_SOURCE_ID,
        )
    return list(seen.values())


def view_record_row(entry: dict, now: str) -> tuple:
    return (
        entry.get("videoId"),
        entry.get("source") or UNKNOWN_SOURCE_ID,
        entry.get("position") or 0,
        entry.get("timeWatched") or 0,
        entry.get("duration") or 0,
        1 if entry.get("watched") else 0,
        entry.get("firstWatched") or now,
        entry.get("lastWatched") or now,
    )


def favorite_row(entry: dict, now: str) -> tuple:
    return (
        entry.get("videoId"),
        entry.get("sourceId") or entry.get("source") or UNKNOWN_SOURCE_ID,
        entry.get("dateAdded") or now,
    )


def usage_log_rows(document: Any) -> list[tuple]:
    """``{date: seconds}`` or ``[{date, secondsUsed}]``."""
    if isinstance(document, dict):
        return [(date, seconds or 0) for date, seconds in document.items()]
    return [
        (entry.get("date"), entry.get("secondsUsed") or 0)
        for entry in _as_list(document)
    ]


def time_limits_row(document: dict) -> tuple:
    days = []
    for day in WEEKDAYS:
        value = document.get(day.capitalize(), document.get(day))
        days.append(value or 0)
    return (
        *days,
        document.get("warningThresholdMinutes"),
        document.get("countdownWarningSeconds"),
        document.get("audioWarningSeconds"),
        document.get("timeUpMessage") or None,
        1 if document.get("useSystemBeep") else 0,
        document.get("customBeepSound") or None,
    )


def usage_extra_rows(document: Any) -> list[tuple]:
    """``{date: minutes}``, ``[{date, minutesAdded, reason, addedBy}]`` or
    ``{"extras": [...]}``."""
    if isinstance(document, dict) and "extras" in document:
        document = document["extras"]
    if isinstance(document, dict):
        return [(date, minutes or 0, None, "admin") for date, minutes in document.items()]
    rows = []
    for entry in _as_list(document):
        minutes = entry.get("minutesAdded")
        if minutes is None:
            minutes = entry.get("minutes", 0)
        rows.append(
            (
                entry.get("date"),
                minutes or 0,
                entry.get("reason") or None,
                entry.get("addedBy") or "admin",
            )
        )
    return rows


# ---------------------------------------------------------------------------
# Migration service
# ---------------------------------------------------------------------------


class MigrationService:
    """Runs the phased migration of legacy documents into the database."""

    def __init__(
        self,
        db: Database,
        schema_manager: SchemaManager,
        loader: LegacyDocumentLoader,
        data_dir: str | Path,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self.db = db
        self.schema_manager = schema_manager
        self.loader = loader
        self.data_dir = Path(data_dir)
        self.retry_options = retry_options or RetryOptions(
            max_attempts=settings.MIGRATION_MAX_ATTEMPTS,
            base_delay=settings.MIGRATION_BASE_DELAY_MS,
        )
        self.last_summary: PhaseSummary | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """True while a phase is being run."""
        return self._running

    # -- phases ------------------------------------------------------------

    async def run_phase1(self) -> PhaseSummary:
        """Back up, create the phase 1 schema and migrate catalog data."""
        units: list[tuple[str, UnitFn]] = [
            ("migrate-sources", self._migrate_sources),
            ("migrate-videos", self._migrate_videos),
            ("migrate-view-records", self._migrate_view_records),
            ("migrate-favorites", self._migrate_favorites),
            ("migrate-youtube-cache", self._migrate_youtube_cache),
        ]
        return await self._run_phase("phase1", units, backup=True)

    async def run_phase2(self) -> PhaseSummary:
        """Create the phase 2 schema and migrate usage policy and settings."""
        units: list[tuple[str, UnitFn]] = [
            ("migrate-usage-logs", self._migrate_usage_logs),
            ("migrate-time-limits", self._migrate_time_limits),
            ("migrate-usage-extras", self._migrate_usage_extras),
            ("migrate-settings", self._migrate_settings),
        ]
        return await self._run_phase("phase2", units, backup=False)

    async def _run_phase(
        self, phase: str, units: list[tuple[str, UnitFn]], backup: bool
    ) -> PhaseSummary:
        if self._running:
            raise MigrationInProgressError("A migration phase is already in progress")
        self._running = True
        summary = PhaseSummary(phase=phase, start_time=_now_iso())
        self.last_summary = summary
        logger.info("Starting %s migration", phase)

        try:
            if backup:
                summary.backup_path = str(create_backup(self.loader, self.data_dir))
            await self.schema_manager.ensure_initialized(phase)

            for name, fn in units:
                status = await self._run_unit(name, fn)
                summary.unit_statuses.append(status)
                summary.total_records_processed += status.records_processed
                if status.error:
                    summary.total_errors += 1
        except Exception as e:
            summary.status = "failed"
            summary.end_time = _now_iso()
            summary.total_errors += 1
            logger.error("%s migration aborted: %s", phase, e)
            raise
        finally:
            self._running = False

        failed = [s.unit_name for s in summary.unit_statuses if s.status == "failed"]
        summary.status = "failed" if failed else "completed"
        summary.end_time = _now_iso()
        if failed:
            logger.error(
                "%s migration finished with %d failed unit(s): %s",
                phase, len(failed), ", ".join(failed),
            )
        else:
            logger.info(
                "%s migration completed: %d records processed",
                phase, summary.total_records_processed,
            )
        return summary

    async def _run_unit(self, name: str, fn: UnitFn) -> UnitStatus:
        status = UnitStatus(unit_name=name, status="in_progress", start_time=_now_iso())
        logger.info("Running %s", name)
        try:
            outcome = await execute_with_retry(fn, name, self.retry_options)
            if outcome.success:
                status.status = "completed"
                status.records_processed = outcome.result or 0
                logger.info(
                    "%s: %d records in %.0f ms",
                    name, status.records_processed, outcome.total_time_ms,
                )
            else:
                status.status = "failed"
                status.error = (
                    outcome.error.message if outcome.error else "Unknown migration error"
                )
                if outcome.error is not None:
                    for hint in recovery_suggestions(outcome.error):
                        logger.info("%s: suggestion: %s", name, hint)
        except Exception as e:
            status.status = "failed"
            status.error = str(e) or e.__class__.__name__
            logger.error("Unexpected error in %s: %s", name, e)
        status.end_time = _now_iso()
        return status

    async def _write(self, statements: list[Statement]) -> int:
        if not statements:
            return 0
        return await self.db.run_transaction(statements)

    # -- phase 1 units -----------------------------------------------------

    async def _migrate_sources(self) -> int:
        sources = _as_list(self.loader.load_video_sources())
        if not sources:
            logger.info("No video sources to migrate")
            return 0
        await self._write(
            [(UPSERT_SOURCE_SQL, source_row(s, i)) for i, s in enumerate(sources)]
        )
        return len(sources)

    async def _migrate_videos(self) -> int:
        watched = _watch_entries(self.loader.load_watched_videos())
        rows = video_rows(watched)
        if not rows:
            logger.info("No watched videos to derive video rows from")
            return 0
        logger.debug("%d unique videos from %d watch entries", len(rows), len(watched))
        await self._write([(UPSERT_VIDEO_SQL, row) for row in rows])
        return len(rows)

    async def _migrate_view_records(self) -> int:
        document = self.loader.load_watched_videos()
        watched = _watch_entries(document)
        skipped = len(_as_list(document)) - len(watched)
        if skipped:
            logger.warning("Skipping %d watch entries without a videoId", skipped)
        if not watched:
            logger.info("No view records to migrate")
            return 0
        now = _now_iso()
        await self._write(
            [(UPSERT_VIEW_RECORD_SQL, view_record_row(e, now)) for e in watched]
        )
        return len(watched)

    async def _migrate_favorites(self) -> int:
        favorites = _favorite_entries(self.loader.load_favorites())
        if not favorites:
            logger.info("No favorites to migrate")
            return 0
        now = _now_iso()
        await self._write(
            [
                (
                    "INSERT OR REPLACE INTO favorites (video_id, source_id, date_added) "
                    "VALUES (?, ?, ?)",
                    favorite_row(f, now),
                )
                for f in favorites
            ]
        )
        return len(favorites)

    async def _migrate_youtube_cache(self) -> int:
        # No legacy document holds API results; the cache starts empty.
        return 0

    # -- phase 2 units -----------------------------------------------------

    async def _migrate_usage_logs(self) -> int:
        rows = usage_log_rows(self.loader.load_usage_log())
        if not rows:
            logger.info("No usage logs to migrate")
            return 0
        await self._write(
            [
                (
                    "INSERT OR REPLACE INTO usage_logs (date, seconds_used) VALUES (?, ?)",
                    row,
                )
                for row in rows
            ]
        )
        return len(rows)

    async def _migrate_time_limits(self) -> int:
        document = self.loader.load_time_limits()
        if not isinstance(document, dict) or not document:
            logger.info("No time limits to migrate")
            return 0
        await self._write(
            [
                (
                    """
                    INSERT OR REPLACE INTO time_limits (
                        id, monday, tuesday, wednesday, thursday, friday,
                        saturday, sunday, warning_threshold_minutes,
                        countdown_warning_seconds, audio_warning_seconds,
                        time_up_message, use_system_beep, custom_beep_sound
                    ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    time_limits_row(document),
                )
            ]
        )
        return 1

    async def _migrate_usage_extras(self) -> int:
        """Append legacy grants that are not in the table yet.

        Grants have no natural key, so rows are matched on all four values
        and each stored row accounts for one legacy entry. Identical grants
        on the same day stay distinct and a re-run adds nothing.
        """
        rows = usage_extra_rows(self.loader.load_time_extras())
        if not rows:
            logger.info("No usage extras to migrate")
            return 0
        inserted = 0
        async with self.db.transaction():
            stored = await self.db.fetchall(
                "SELECT date, minutes_added, reason, added_by FROM usage_extras"
            )
            existing = Counter(
                (r["date"], r["minutes_added"], r["reason"], r["added_by"]) for r in stored
            )
            for row in rows:
                if existing[row] > 0:
                    existing[row] -= 1
                    continue
                await self.db.execute(
                    "INSERT INTO usage_extras (date, minutes_added, reason, added_by) "
                    "VALUES (?, ?, ?, ?)",
                    row,
                )
                inserted += 1
        if inserted < len(rows):
            logger.info("%d usage extras already migrated", len(rows) - inserted)
        return len(rows)

    async def _migrate_settings(self) -> int:
        statements: list[Statement] = []
        for namespace, method in SETTINGS_DOCUMENTS:
            document = getattr(self.loader, method)()
            if not isinstance(document, dict) or not document:
                continue
            logger.debug("Flattening %d %s settings", len(document), namespace)
            for key, value in document.items():
                statements.append(
                    (SET_SETTING_SQL, setting_params(f"{namespace}.{key}", value))
                )
        if not statements:
            logger.info("No settings to migrate")
            return 0
        await self._write(statements)
        return len(statements)

    # -- verification ------------------------------------------------------

    async def verify_integrity(self) -> IntegrityResult:
        """Compare legacy record counts with stored row counts.

        Watch history may list a video more than once while ``view_records``
        holds one row per video, so a mismatch there is reported, not
        reconciled.
        """
        result = IntegrityResult(is_valid=True)
        checks = [
            ("sources", lambda: _as_list(self.loader.load_video_sources())),
            ("view_records", lambda: _watch_entries(self.loader.load_watched_videos())),
            ("favorites", lambda: _favorite_entries(self.loader.load_favorites())),
        ]
        try:
            for table, load in checks:
                expected = len(load())
                actual = await self.db.fetchval(f"SELECT COUNT(*) AS count FROM {table}")
                result.counts[table] = TableCount(expected=expected, actual=actual or 0)
                if expected != (actual or 0):
                    result.is_valid = False
                    result.errors.append(
                        f"{table} count mismatch: expected {expected}, got {actual or 0}"
                    )
        except Exception as e:
            result.is_valid = False
            result.errors.append(f"Integrity verification failed: {e}")
            logger.error("Integrity verification failed: %s", e)
            return result

        if result.is_valid:
            logger.info("Integrity verification passed")
        else:
            logger.warning("Integrity verification found %d mismatch(es)", len(result.errors))
        return result
