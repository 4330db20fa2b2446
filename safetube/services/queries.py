"""Entity-level read and write helpers on top of :class:`Database`.

Every helper takes the shared database handle as its first argument.
Writes that touch more than one row run inside ``db.transaction()``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from safetube.database import Database
from safetube.models.schemas import SourceRecord, TimeLimitPatch, VideoRecord

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

UPSERT_SOURCE_SQL = """
INSERT INTO sources (
    id, type, title, url, thumbnail, channel_id, path,
    sort_preference, position, total_videos, max_depth
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    type = excluded.type,
    title = excluded.title,
    url = excluded.url,
    thumbnail = excluded.thumbnail,
    channel_id = excluded.channel_id,
    path = excluded.path,
    sort_preference = excluded.sort_preference,
    position = excluded.position,
    total_videos = excluded.total_videos,
    max_depth = excluded.max_depth,
    updated_at = CURRENT_TIMESTAMP
"""


async def upsert_source(db: Database, source: SourceRecord) -> None:
    async with db.transaction():
        await db.execute(
            UPSERT_SOURCE_SQL,
            (
                source.id,
                source.type,
                source.title,
                source.url,
                source.thumbnail,
                source.channel_id,
                source.path,
                source.sort_preference,
                source.position,
                source.total_videos,
                source.max_depth,
            ),
        )


async def get_source(db: Database, source_id: str) -> dict | None:
    return await db.fetchone("SELECT * FROM sources WHERE id = ?", (source_id,))


async def list_sources(db: Database) -> list[dict]:
    return await db.fetchall(
        "SELECT * FROM sources ORDER BY position IS NULL, position, title"
    )


async def delete_source(db: Database, source_id: str) -> bool:
    """Delete a source; dependent rows go with it via ON DELETE CASCADE."""
    async with db.transaction():
        cursor = await db.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        deleted = cursor.rowcount > 0
    if deleted:
        logger.info("Deleted source %s", source_id)
    return deleted


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------

# ON CONFLICT keeps the rowid stable so the search update trigger fires
# instead of a delete/insert pair.
UPSERT_VIDEO_SQL = """
INSERT INTO videos (
    id, title, published_at, thumbnail, duration, url,
    is_available, description, source_id
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    title = excluded.title,
    published_at = excluded.published_at,
    thumbnail = excluded.thumbnail,
    duration = excluded.duration,
    url = excluded.url,
    is_available = excluded.is_available,
    description = excluded.description,
    source_id = excluded.source_id,
    updated_at = CURRENT_TIMESTAMP
"""


def video_params(video: VideoRecord) -> tuple:
    return (
        video.id,
        video.title,
        video.published_at,
        video.thumbnail,
        video.duration,
        video.url,
        1 if video.is_available else 0,
        video.description,
        video.source_id,
    )


async def upsert_video(db: Database, video: VideoRecord) -> None:
    async with db.transaction():
        await db.execute(UPSERT_VIDEO_SQL, video_params(video))


async def get_video(db: Database, video_id: str) -> dict | None:
    return await db.fetchone("SELECT * FROM videos WHERE id = ?", (video_id,))


def _fts_query(text: str) -> str:
    """Quote each term so user input cannot inject FTS5 syntax."""
    terms = [t.replace('"', '""') for t in text.split()]
    return " ".join(f'"{t}"' for t in terms)


async def search_videos(db: Database, query: str, limit: int = 50) -> list[dict]:
    """Full-text search over video title and description, best match first."""
    if not query or not query.strip():
        return []
    return await db.fetchall(
        """
        SELECT v.*
        FROM videos_search
        JOIN videos v ON v.rowid = videos_search.rowid
        WHERE videos_search MATCH ?
        ORDER BY bm25(videos_search)
        LIMIT ?
        """,
        (_fts_query(query), limit),
    )


# ---------------------------------------------------------------------------
# View records
# ---------------------------------------------------------------------------

# first_watched is written on insert only.
UPSERT_VIEW_RECORD_SQL = """
INSERT INTO view_records (
    video_id, source_id, position, time_watched, duration,
    watched, first_watched, last_watched
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(video_id) DO UPDATE SET
    source_id = excluded.source_id,
    position = excluded.position,
    time_watched = excluded.time_watched,
    duration = excluded.duration,
    watched = excluded.watched,
    last_watched = excluded.last_watched,
    updated_at = CURRENT_TIMESTAMP
"""


async def upsert_view_record(
    db: Database,
    video_id: str,
    source_id: str,
    position: float = 0,
    time_watched: float = 0,
    duration: int | None = None,
    watched: bool = False,
    watched_at: str | None = None,
) -> None:
    """Record a viewing of *video_id* at *watched_at* (default: now).

    The first call sets ``first_watched``; later calls only move
    ``last_watched`` forward.
    """
    ts = watched_at or now_iso()
    async with db.transaction():
        await db.execute(
            UPSERT_VIEW_RECORD_SQL,
            (
                video_id,
                source_id,
                position,
                time_watched,
                duration,
                1 if watched else 0,
                ts,
                ts,
            ),
        )


async def get_view_record(db: Database, video_id: str) -> dict | None:
    return await db.fetchone(
        "SELECT * FROM view_records WHERE video_id = ?", (video_id,)
    )


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


async def add_favorite(
    db: Database, video_id: str, source_id: str, date_added: str | None = None
) -> None:
    async with db.transaction():
        await db.execute(
            "INSERT OR REPLACE INTO favorites (video_id, source_id, date_added) "
            "VALUES (?, ?, ?)",
            (video_id, source_id, date_added or now_iso()),
        )


async def remove_favorite(db: Database, video_id: str) -> bool:
    async with db.transaction():
        cursor = await db.execute(
            "DELETE FROM favorites WHERE video_id = ?", (video_id,)
        )
        return cursor.rowcount > 0


async def is_favorite(db: Database, video_id: str) -> bool:
    row = await db.fetchone(
        "SELECT 1 AS found FROM favorites WHERE video_id = ?", (video_id,)
    )
    return row is not None


# ---------------------------------------------------------------------------
# YouTube page cache
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE = 50


def page_range(page_number: int, page_size: int = DEFAULT_PAGE_SIZE) -> str:
    """1-based inclusive position range of a page, e.g. ``"51-100"``."""
    if page_number < 1 or page_size < 1:
        raise ValueError("page_number and page_size must be positive")
    start = (page_number - 1) * page_size + 1
    return f"{start}-{start + page_size - 1}"


async def save_cached_page(
    db: Database,
    source_id: str,
    page_number: int,
    video_ids: list[str],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Replace the cached entries for one page of a source.

    Positions are absolute across pages so a page can be rebuilt in order.
    The videos must already exist. Returns the number of entries written.
    """
    label = page_range(page_number, page_size)
    base = (page_number - 1) * page_size
    # A repeated id would hit the (source, video, page) unique key
    ids = list(dict.fromkeys(video_ids))[:page_size]
    fetched_at = now_iso()
    async with db.transaction():
        await db.execute(
            "DELETE FROM youtube_api_results "
            "WHERE source_id = ? AND position > ? AND position <= ?",
            (source_id, base, base + page_size),
        )
        for offset, video_id in enumerate(ids, start=1):
            await db.execute(
                "INSERT INTO youtube_api_results "
                "(source_id, video_id, position, page_range, fetch_timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (source_id, video_id, base + offset, label, fetched_at),
            )
    logger.debug("Cached %d videos for %s page %s", len(ids), source_id, label)
    return len(ids)


async def find_cached_page(
    db: Database,
    source_id: str,
    page_number: int,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> dict | None:
    """Rebuild a cached page, or None when the page was never cached."""
    rows = await db.fetchall(
        """
        SELECT v.id, v.title, v.published_at, v.thumbnail, v.duration, v.url,
               v.is_available, v.description, y.position, y.fetch_timestamp
        FROM youtube_api_results y
        JOIN videos v ON v.id = y.video_id
        WHERE y.source_id = ? AND y.page_range = ?
        ORDER BY y.position
        """,
        (source_id, page_range(page_number, page_size)),
    )
    if not rows:
        return None

    source_type = await db.fetchval("SELECT type FROM sources WHERE id = ?", (source_id,))
    return {
        "videos": [
            {k: row[k] for k in row if k not in ("position", "fetch_timestamp")}
            for row in rows
        ],
        "page_number": page_number,
        "total_results": await count_cached_results(db, source_id),
        "fetched_at": max(row["fetch_timestamp"] for row in rows),
        "source_id": source_id,
        "source_type": source_type or "youtube_channel",
    }


async def find_cached_video_ids(
    db: Database,
    source_id: str,
    page_number: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[str]:
    base = (page_number - 1) * page_size
    rows = await db.fetchall(
        "SELECT video_id FROM youtube_api_results "
        "WHERE source_id = ? AND position > ? AND position <= ? ORDER BY position",
        (source_id, base, base + page_size),
    )
    return [row["video_id"] for row in rows]


async def count_cached_results(db: Database, source_id: str) -> int:
    count = await db.fetchval(
        "SELECT COUNT(*) FROM youtube_api_results WHERE source_id = ?", (source_id,)
    )
    return count or 0


async def clear_source_cache(db: Database, source_id: str) -> int:
    """Drop every cached page of a source. Returns the rows removed."""
    async with db.transaction():
        cursor = await db.execute(
            "DELETE FROM youtube_api_results WHERE source_id = ?", (source_id,)
        )
        removed = cursor.rowcount
    logger.info("Cleared %d cached results for source %s", removed, source_id)
    return removed


# ---------------------------------------------------------------------------
# Time limits (singleton row, id = 1)
# ---------------------------------------------------------------------------


async def get_time_limits(db: Database) -> dict | None:
    return await db.fetchone("SELECT * FROM time_limits WHERE id = 1")


async def update_time_limits(db: Database, patch: TimeLimitPatch) -> int:
    """Apply the fields set on *patch* to the singleton row.

    Returns the number of columns written. Column names come from the
    model definition, never from caller input.
    """
    fields = patch.model_dump(exclude_unset=True)
    if not fields:
        return 0

    columns = [name for name in TimeLimitPatch.model_fields if name in fields]
    values = []
    for name in columns:
        value = fields[name]
        values.append(int(value) if isinstance(value, bool) else value)

    assignments = ", ".join(f"{name} = ?" for name in columns)
    async with db.transaction():
        await db.execute("INSERT OR IGNORE INTO time_limits (id) VALUES (1)")
        await db.execute(
            f"UPDATE time_limits SET {assignments}, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = 1",
            values,
        )
    logger.debug("Updated time limits: %s", ", ".join(columns))
    return len(columns)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def infer_setting_type(value: Any) -> str:
    # bool is a subclass of int, so it must be checked first
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def serialize_setting(value: Any) -> tuple[str, str]:
    """Return ``(json_value, type)`` for storage."""
    return json.dumps(value), infer_setting_type(value)


def deserialize_setting(raw: str | None, type_: str) -> Any:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Setting value is not valid JSON, returning raw text")
        return raw
    if type_ == "boolean":
        return bool(value)
    if type_ == "number" and isinstance(value, str):
        return float(value)
    return value


SET_SETTING_SQL = """
INSERT INTO settings (key, value, type, description)
VALUES (?, ?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    type = excluded.type,
    description = COALESCE(excluded.description, settings.description),
    updated_at = CURRENT_TIMESTAMP
"""


def setting_params(key: str, value: Any, description: str | None = None) -> tuple:
    raw, type_ = serialize_setting(value)
    return (key, raw, type_, description)


async def set_setting(
    db: Database, key: str, value: Any, description: str | None = None
) -> None:
    async with db.transaction():
        await db.execute(SET_SETTING_SQL, setting_params(key, value, description))


async def get_setting(db: Database, key: str, default: Any = None) -> Any:
    row = await db.fetchone("SELECT value, type FROM settings WHERE key = ?", (key,))
    if row is None:
        return default
    return deserialize_setting(row["value"], row["type"])


async def get_settings_by_namespace(db: Database, namespace: str) -> dict[str, Any]:
    """All settings under ``<namespace>.`` keyed by the name after the dot."""
    prefix = f"{namespace}."
    rows = await db.fetchall(
        "SELECT key, value, type FROM settings WHERE substr(key, 1, ?) = ? ORDER BY key",
        (len(prefix), prefix),
    )
    return {
        row["key"][len(prefix):]: deserialize_setting(row["value"], row["type"])
        for row in rows
    }


# ---------------------------------------------------------------------------
# Usage accounting
# ---------------------------------------------------------------------------


async def add_usage_seconds(db: Database, date: str, seconds: float) -> float:
    """Add *seconds* to the usage total for *date* and return the new total."""
    async with db.transaction():
        await db.execute(
            """
            INSERT INTO usage_logs (date, seconds_used) VALUES (?, ?)
            ON CONFLICT(date) DO UPDATE SET
                seconds_used = usage_logs.seconds_used + excluded.seconds_used,
                updated_at = CURRENT_TIMESTAMP
            """,
            (date, seconds),
        )
    return await get_usage_seconds(db, date)


async def get_usage_seconds(db: Database, date: str) -> float:
    value = await db.fetchval(
        "SELECT seconds_used FROM usage_logs WHERE date = ?", (date,)
    )
    return float(value or 0)


async def add_usage_extra(
    db: Database,
    date: str,
    minutes: int,
    reason: str | None = None,
    added_by: str = "admin",
) -> None:
    """Append an extra-time grant (or a deduction when *minutes* < 0)."""
    async with db.transaction():
        await db.execute(
            "INSERT INTO usage_extras (date, minutes_added, reason, added_by) "
            "VALUES (?, ?, ?, ?)",
            (date, minutes, reason, added_by),
        )


async def get_usage_extra_minutes(db: Database, date: str) -> int:
    value = await db.fetchval(
        "SELECT COALESCE(SUM(minutes_added), 0) AS total FROM usage_extras WHERE date = ?",
        (date,),
    )
    return int(value or 0)
