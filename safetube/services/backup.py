"""Pre-migration snapshot of the legacy JSON documents."""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from safetube.services.legacy_loader import LegacyDocumentLoader

logger = logging.getLogger(__name__)

BACKUP_DIRNAME = "backup"


class BackupError(Exception):
    """The legacy documents could not be copied."""


def backup_dir_name(now: datetime | None = None) -> str:
    """``migration-<UTC ISO timestamp>`` with ``:`` and ``.`` made path-safe.

    >>> backup_dir_name(datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
    'migration-2024-01-02T03-04-05-678Z'
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    stamp = stamp.replace("+00:00", "Z").replace(":", "-").replace(".", "-")
    return f"migration-{stamp}"


def create_backup(
    documents: LegacyDocumentLoader | Iterable[str | Path],
    data_dir: str | Path,
    now: datetime | None = None,
) -> Path:
    """Copy every existing legacy document into a fresh backup directory.

    Returns the directory path. Documents that do not exist are skipped.
    Raises :class:`BackupError` if the directory cannot be created or a copy
    fails.
    """
    if isinstance(documents, LegacyDocumentLoader):
        paths = documents.document_paths()
    else:
        paths = [Path(p) for p in documents]

    target = Path(data_dir) / BACKUP_DIRNAME / backup_dir_name(now)
    copied = 0
    try:
        target.mkdir(parents=True, exist_ok=True)
        for src in paths:
            if not src.is_file():
                continue
            shutil.copy2(src, target / src.name)
            copied += 1
    except OSError as e:
        logger.error("Backup to %s failed: %s", target, e)
        raise BackupError(f"Failed to back up legacy documents: {e}") from e

    logger.info("Backed up %d legacy document(s) to %s", copied, target)
    return target
