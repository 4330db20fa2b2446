"""Database schema definitions, grouped by schema phase.

Phases are cumulative: initializing ``phase2`` runs every ``phase1``
statement first. Each statement is guarded with ``IF NOT EXISTS`` so it can
be re-run safely. Statements are kept as separate strings (no script
splitting) because trigger bodies contain semicolons.
"""

PHASES: tuple[str, ...] = ("phase1", "phase2")

PHASE_VERSIONS: dict[str, int] = {"phase1": 1, "phase2": 2}

SOURCE_TYPES: tuple[str, ...] = (
    "local",
    "youtube_channel",
    "youtube_playlist",
    "dlna",
    "favorites",
)

LOCAL_SOURCE_TYPES = frozenset({"local"})
REMOTE_SOURCE_TYPES = frozenset({"youtube_channel", "youtube_playlist", "dlna"})

# ---------------------------------------------------------------------------
# Phase 1: catalog, watch history, favorites, API cache
# ---------------------------------------------------------------------------

SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    version INTEGER NOT NULL,
    phase TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

SOURCES_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT,
    thumbnail TEXT,
    channel_id TEXT,
    path TEXT,
    sort_preference TEXT,
    position INTEGER,
    total_videos INTEGER,
    max_depth INTEGER,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (
        (type = 'local' AND path IS NOT NULL AND url IS NULL) OR
        (type IN ('youtube_channel', 'youtube_playlist', 'dlna')
            AND url IS NOT NULL AND path IS NULL) OR
        (type = 'favorites' AND url IS NULL AND path IS NULL)
    )
)
"""

VIDEOS_SQL = """
CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    published_at TEXT,
    thumbnail TEXT,
    duration INTEGER,
    url TEXT,
    is_available BOOLEAN NOT NULL DEFAULT 1,
    description TEXT,
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

# The search index stores its own copy of title/description keyed by the
# videos rowid; the three triggers below keep it in step with videos.
VIDEOS_SEARCH_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS videos_search USING fts5(
    video_id UNINDEXED,
    title,
    description,
    tokenize='porter unicode61'
)
"""

VIDEOS_SEARCH_TRIGGERS: list[str] = [
    """
CREATE TRIGGER IF NOT EXISTS videos_search_insert AFTER INSERT ON videos BEGIN
    INSERT INTO videos_search(rowid, video_id, title, description)
    VALUES (new.rowid, new.id, new.title, COALESCE(new.description, ''));
END
""",
    """
CREATE TRIGGER IF NOT EXISTS videos_search_update AFTER UPDATE ON videos BEGIN
    DELETE FROM videos_search WHERE rowid = old.rowid;
    INSERT INTO videos_search(rowid, video_id, title, description)
    VALUES (new.rowid, new.id, new.title, COALESCE(new.description, ''));
END
""",
    """
CREATE TRIGGER IF NOT EXISTS videos_search_delete AFTER DELETE ON videos BEGIN
    DELETE FROM videos_search WHERE rowid = old.rowid;
END
""",
]

VIEW_RECORDS_SQL = """
CREATE TABLE IF NOT EXISTS view_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT NOT NULL UNIQUE REFERENCES videos(id) ON DELETE CASCADE,
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    position REAL NOT NULL DEFAULT 0,
    time_watched REAL NOT NULL DEFAULT 0,
    duration INTEGER,
    watched BOOLEAN NOT NULL DEFAULT 0,
    first_watched TEXT NOT NULL,
    last_watched TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

FAVORITES_SQL = """
CREATE TABLE IF NOT EXISTS favorites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT NOT NULL UNIQUE REFERENCES videos(id) ON DELETE CASCADE,
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    date_added TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

YOUTUBE_API_RESULTS_SQL = """
CREATE TABLE IF NOT EXISTS youtube_api_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    video_id TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    page_range TEXT NOT NULL,
    fetch_timestamp TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(source_id, video_id, page_range)
)
"""

PHASE1_INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_sources_type ON sources(type)",
    "CREATE INDEX IF NOT EXISTS idx_sources_title ON sources(title)",
    "CREATE INDEX IF NOT EXISTS idx_sources_position ON sources(position)",
    "CREATE INDEX IF NOT EXISTS idx_videos_source_id ON videos(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_videos_title ON videos(title)",
    "CREATE INDEX IF NOT EXISTS idx_videos_published_at ON videos(published_at)",
    "CREATE INDEX IF NOT EXISTS idx_videos_updated_at ON videos(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_view_records_video_id ON view_records(video_id)",
    "CREATE INDEX IF NOT EXISTS idx_view_records_source_id ON view_records(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_view_records_last_watched ON view_records(last_watched)",
    "CREATE INDEX IF NOT EXISTS idx_view_records_watched ON view_records(watched)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_video_id ON favorites(video_id)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_source_id ON favorites(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_date_added ON favorites(date_added)",
    "CREATE INDEX IF NOT EXISTS idx_youtube_api_source_id ON youtube_api_results(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_youtube_api_page_range ON youtube_api_results(source_id, page_range)",
    "CREATE INDEX IF NOT EXISTS idx_youtube_api_position ON youtube_api_results(source_id, page_range, position)",
    "CREATE INDEX IF NOT EXISTS idx_youtube_api_fetch_timestamp ON youtube_api_results(fetch_timestamp)",
]

# ---------------------------------------------------------------------------
# Phase 2: usage policy, settings, download tracking
# ---------------------------------------------------------------------------

USAGE_LOGS_SQL = """
CREATE TABLE IF NOT EXISTS usage_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL UNIQUE,
    seconds_used REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

TIME_LIMITS_SQL = """
CREATE TABLE IF NOT EXISTS time_limits (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    monday INTEGER NOT NULL DEFAULT 0,
    tuesday INTEGER NOT NULL DEFAULT 0,
    wednesday INTEGER NOT NULL DEFAULT 0,
    thursday INTEGER NOT NULL DEFAULT 0,
    friday INTEGER NOT NULL DEFAULT 0,
    saturday INTEGER NOT NULL DEFAULT 0,
    sunday INTEGER NOT NULL DEFAULT 0,
    warning_threshold_minutes INTEGER,
    countdown_warning_seconds INTEGER,
    audio_warning_seconds INTEGER,
    time_up_message TEXT,
    use_system_beep BOOLEAN DEFAULT 0,
    custom_beep_sound TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

TIME_LIMITS_SEED_SQL = "INSERT OR IGNORE INTO time_limits (id) VALUES (1)"

USAGE_EXTRAS_SQL = """
CREATE TABLE IF NOT EXISTS usage_extras (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    minutes_added INTEGER NOT NULL,
    reason TEXT,
    added_by TEXT DEFAULT 'admin',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

SETTINGS_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT,
    type TEXT NOT NULL DEFAULT 'string'
        CHECK (type IN ('string', 'number', 'boolean', 'object')),
    description TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

# Owned by the download feature; created here so the schema is complete,
# never written by the migration.
DOWNLOADS_SQL = """
CREATE TABLE IF NOT EXISTS downloads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT NOT NULL UNIQUE,
    source_id TEXT REFERENCES sources(id) ON DELETE CASCADE,
    status TEXT NOT NULL CHECK (status IN ('pending', 'downloading', 'completed', 'failed')),
    progress INTEGER NOT NULL DEFAULT 0,
    start_time INTEGER,
    end_time INTEGER,
    error_message TEXT,
    file_path TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

DOWNLOADED_VIDEOS_SQL = """
CREATE TABLE IF NOT EXISTS downloaded_videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT UNIQUE REFERENCES videos(id) ON DELETE SET NULL,
    source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    file_path TEXT NOT NULL,
    thumbnail_path TEXT,
    duration INTEGER,
    downloaded_at TEXT NOT NULL,
    file_size INTEGER,
    format TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

PHASE2_INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_usage_logs_updated_at ON usage_logs(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_usage_extras_date ON usage_extras(date)",
    "CREATE INDEX IF NOT EXISTS idx_downloads_status ON downloads(status)",
    "CREATE INDEX IF NOT EXISTS idx_downloaded_videos_source_id ON downloaded_videos(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_downloaded_videos_downloaded_at ON downloaded_videos(downloaded_at)",
    "CREATE INDEX IF NOT EXISTS idx_downloaded_videos_file_path ON downloaded_videos(file_path)",
]

# ---------------------------------------------------------------------------
# Per-phase statement lists and the objects validation expects
# ---------------------------------------------------------------------------

PHASE_STATEMENTS: dict[str, list[str]] = {
    "phase1": [
        SCHEMA_VERSION_SQL,
        SOURCES_SQL,
        VIDEOS_SQL,
        VIDEOS_SEARCH_SQL,
        *VIDEOS_SEARCH_TRIGGERS,
        VIEW_RECORDS_SQL,
        FAVORITES_SQL,
        YOUTUBE_API_RESULTS_SQL,
        *PHASE1_INDEXES,
    ],
    "phase2": [
        USAGE_LOGS_SQL,
        TIME_LIMITS_SQL,
        TIME_LIMITS_SEED_SQL,
        USAGE_EXTRAS_SQL,
        SETTINGS_SQL,
        DOWNLOADS_SQL,
        DOWNLOADED_VIDEOS_SQL,
        *PHASE2_INDEXES,
    ],
}

PHASE_TABLES: dict[str, list[str]] = {
    "phase1": [
        "schema_version",
        "sources",
        "videos",
        "videos_search",
        "view_records",
        "favorites",
        "youtube_api_results",
    ],
    "phase2": [
        "usage_logs",
        "time_limits",
        "usage_extras",
        "settings",
        "downloads",
        "downloaded_videos",
    ],
}

SEARCH_TRIGGERS: list[str] = [
    "videos_search_insert",
    "videos_search_update",
    "videos_search_delete",
]


def _index_name(statement: str) -> str:
    return statement.split("EXISTS", 1)[1].split()[0]


PHASE_INDEXES: dict[str, list[str]] = {
    "phase1": [_index_name(s) for s in PHASE1_INDEXES],
    "phase2": [_index_name(s) for s in PHASE2_INDEXES],
}


def phases_through(phase: str) -> list[str]:
    """Return every phase up to and including *phase*, oldest first."""
    if phase not in PHASES:
        raise ValueError(f"Unknown schema phase: {phase!r}")
    return list(PHASES[: PHASES.index(phase) + 1])


def statements_through(phase: str) -> list[str]:
    return [sql for p in phases_through(phase) for sql in PHASE_STATEMENTS[p]]


def tables_through(phase: str) -> list[str]:
    return [t for p in phases_through(phase) for t in PHASE_TABLES[p]]


def indexes_through(phase: str) -> list[str]:
    return [i for p in phases_through(phase) for i in PHASE_INDEXES[p]]
