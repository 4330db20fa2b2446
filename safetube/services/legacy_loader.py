"""Read-only access to the legacy JSON configuration documents.

A missing document is not an error: the loader returns an empty default of
the document's shape. Unreadable or malformed documents are logged and
also treated as empty, so one bad file never aborts a migration.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

VIDEO_SOURCES_FILE = "videoSources.json"
WATCHED_FILE = "watched.json"
FAVORITES_FILE = "favorites.json"
USAGE_LOG_FILE = "usageLog.json"
TIME_LIMITS_FILE = "timeLimits.json"
MAIN_SETTINGS_FILE = "mainSettings.json"
TIME_EXTRA_FILE = "timeExtra.json"
PAGINATION_FILE = "pagination.json"
PLAYER_SETTINGS_FILE = "youtubePlayer.json"

LEGACY_DOCUMENTS: tuple[str, ...] = (
    VIDEO_SOURCES_FILE,
    WATCHED_FILE,
    FAVORITES_FILE,
    USAGE_LOG_FILE,
    TIME_LIMITS_FILE,
    MAIN_SETTINGS_FILE,
    TIME_EXTRA_FILE,
    PAGINATION_FILE,
    PLAYER_SETTINGS_FILE,
)


class LegacyDocumentLoader:
    def __init__(self, config_dir: str | Path) -> None:
        self.config_dir = Path(config_dir)

    def document_paths(self) -> list[Path]:
        """Paths of every legacy document, whether or not it exists."""
        return [self.config_dir / name for name in LEGACY_DOCUMENTS]

    def _load(self, filename: str, default: Any) -> Any:
        path = self.config_dir / filename
        if not path.exists():
            logger.debug("Legacy document %s not found, using default", path)
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to read legacy document %s: %s", path, e)
            return default

    # -- list documents ----------------------------------------------------

    def load_video_sources(self) -> Any:
        return self._load(VIDEO_SOURCES_FILE, [])

    def load_watched_videos(self) -> Any:
        return self._load(WATCHED_FILE, [])

    def load_favorites(self) -> Any:
        """Either a bare list or ``{"favorites": [...]}``."""
        return self._load(FAVORITES_FILE, [])

    # -- object documents --------------------------------------------------

    def load_usage_log(self) -> Any:
        return self._load(USAGE_LOG_FILE, {})

    def load_time_limits(self) -> Any:
        return self._load(TIME_LIMITS_FILE, {})

    def load_main_settings(self) -> Any:
        return self._load(MAIN_SETTINGS_FILE, {})

    def load_time_extras(self) -> Any:
        return self._load(TIME_EXTRA_FILE, {})

    def load_pagination_settings(self) -> Any:
        return self._load(PAGINATION_FILE, {})

    def load_player_settings(self) -> Any:
        return self._load(PLAYER_SETTINGS_FILE, {})
