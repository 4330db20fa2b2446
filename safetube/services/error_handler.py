"""Storage error classification and retry with exponential backoff.

Raw sqlite3 / aiosqlite exceptions are mapped onto :class:`DatabaseErrorKind`
so callers can branch on a stable taxonomy. Only lock/busy and timeout
kinds are retried; constraint violations and corruption never are.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseErrorKind(str, Enum):
    CONNECTION_FAILED = "connection_failed"
    CONNECTION_TIMEOUT = "connection_timeout"
    QUERY_TIMEOUT = "query_timeout"
    SYNTAX_ERROR = "syntax_error"
    CONSTRAINT_VIOLATION = "constraint_violation"
    CHECK_VIOLATION = "check_violation"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    NOT_NULL_VIOLATION = "not_null_violation"
    UNIQUE_VIOLATION = "unique_violation"
    DATABASE_LOCKED = "database_locked"
    DISK_FULL = "disk_full"
    READONLY = "readonly"
    PERMISSION_DENIED = "permission_denied"
    CORRUPTION = "corruption"
    SCHEMA_MISMATCH = "schema_mismatch"
    MIGRATION_FAILED = "migration_failed"
    VALIDATION_FAILED = "validation_failed"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        DatabaseErrorKind.DATABASE_LOCKED,
        DatabaseErrorKind.QUERY_TIMEOUT,
        DatabaseErrorKind.CONNECTION_TIMEOUT,
    }
)

CONSTRAINT_KINDS = frozenset(
    {
        DatabaseErrorKind.CONSTRAINT_VIOLATION,
        DatabaseErrorKind.CHECK_VIOLATION,
        DatabaseErrorKind.FOREIGN_KEY_VIOLATION,
        DatabaseErrorKind.NOT_NULL_VIOLATION,
        DatabaseErrorKind.UNIQUE_VIOLATION,
    }
)

# Extended result code names as exposed by sqlite3.Error.sqlite_errorname
_CODE_KINDS: dict[str, DatabaseErrorKind] = {
    "SQLITE_BUSY": DatabaseErrorKind.DATABASE_LOCKED,
    "SQLITE_BUSY_RECOVERY": DatabaseErrorKind.DATABASE_LOCKED,
    "SQLITE_BUSY_SNAPSHOT": DatabaseErrorKind.DATABASE_LOCKED,
    "SQLITE_LOCKED": DatabaseErrorKind.DATABASE_LOCKED,
    "SQLITE_LOCKED_SHAREDCACHE": DatabaseErrorKind.DATABASE_LOCKED,
    "SQLITE_BUSY_TIMEOUT": DatabaseErrorKind.CONNECTION_TIMEOUT,
    "SQLITE_CONSTRAINT_CHECK": DatabaseErrorKind.CHECK_VIOLATION,
    "SQLITE_CONSTRAINT_FOREIGNKEY": DatabaseErrorKind.FOREIGN_KEY_VIOLATION,
    "SQLITE_CONSTRAINT_NOTNULL": DatabaseErrorKind.NOT_NULL_VIOLATION,
    "SQLITE_CONSTRAINT_PRIMARYKEY": DatabaseErrorKind.UNIQUE_VIOLATION,
    "SQLITE_CONSTRAINT_UNIQUE": DatabaseErrorKind.UNIQUE_VIOLATION,
    "SQLITE_FULL": DatabaseErrorKind.DISK_FULL,
    "SQLITE_PERM": DatabaseErrorKind.PERMISSION_DENIED,
    "SQLITE_AUTH": DatabaseErrorKind.PERMISSION_DENIED,
    "SQLITE_NOTADB": DatabaseErrorKind.CORRUPTION,
}

_PREFIX_KINDS: list[tuple[str, DatabaseErrorKind]] = [
    ("SQLITE_CANTOPEN", DatabaseErrorKind.CONNECTION_FAILED),
    ("SQLITE_READONLY", DatabaseErrorKind.READONLY),
    ("SQLITE_CORRUPT", DatabaseErrorKind.CORRUPTION),
]

# Checked in order against the lower-cased message
_MESSAGE_PATTERNS: list[tuple[tuple[str, ...], DatabaseErrorKind]] = [
    (("timeout",), DatabaseErrorKind.QUERY_TIMEOUT),
    (("locked",), DatabaseErrorKind.DATABASE_LOCKED),
    (("syntax",), DatabaseErrorKind.SYNTAX_ERROR),
    (("foreign key constraint",), DatabaseErrorKind.FOREIGN_KEY_VIOLATION),
    (("unique constraint", "not unique"), DatabaseErrorKind.UNIQUE_VIOLATION),
    (("check constraint",), DatabaseErrorKind.CHECK_VIOLATION),
    (("not null constraint",), DatabaseErrorKind.NOT_NULL_VIOLATION),
]


class StorageError(Exception):
    """A storage failure tagged with its :class:`DatabaseErrorKind`."""

    def __init__(
        self,
        message: str,
        kind: DatabaseErrorKind = DatabaseErrorKind.UNKNOWN,
        sqlite_code: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.sqlite_code = sqlite_code
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return (
            f"StorageError(kind={self.kind.value!r}, message={self.message!r}, "
            f"sqlite_code={self.sqlite_code!r}, operation={self.operation!r})"
        )


def _engine_code(error: BaseException) -> str | None:
    code = getattr(error, "sqlite_errorname", None) or getattr(error, "code", None)
    if code is None:
        return None
    return str(code)


def _kind_from_message(message: str) -> DatabaseErrorKind | None:
    lowered = message.lower()
    for needles, kind in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind
    return None


def _kind_from_code(code: str, message: str) -> DatabaseErrorKind | None:
    if code in _CODE_KINDS:
        return _CODE_KINDS[code]
    for prefix, kind in _PREFIX_KINDS:
        if code.startswith(prefix):
            return kind
    if code.startswith("SQLITE_CONSTRAINT"):
        return _kind_from_message(message) or DatabaseErrorKind.CONSTRAINT_VIOLATION
    if code == "SQLITE_ERROR":
        lowered = message.lower()
        if "syntax error" in lowered or "incomplete input" in lowered:
            return DatabaseErrorKind.SYNTAX_ERROR
        return _kind_from_message(message)
    return None


def classify_error(error: BaseException, operation: str | None = None) -> StorageError:
    """Map *error* onto the storage taxonomy.

    The engine-specific code is consulted first; the message is only
    pattern-matched when no code is present or the code is not recognised.
    The original message and engine code are preserved for diagnostics.
    """
    if isinstance(error, StorageError):
        if operation and error.operation is None:
            error.operation = operation
        return error

    message = str(error) or error.__class__.__name__
    code = _engine_code(error)

    kind = _kind_from_code(code, message) if code else None
    if kind is None:
        kind = _kind_from_message(message)
    if kind is None and isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        kind = DatabaseErrorKind.QUERY_TIMEOUT
    if kind is None:
        kind = DatabaseErrorKind.UNKNOWN

    classified = StorageError(message, kind=kind, sqlite_code=code, operation=operation)
    classified.__cause__ = error
    return classified


def is_retryable(error: BaseException) -> bool:
    return classify_error(error).kind in RETRYABLE_KINDS


def recovery_suggestions(error: StorageError) -> list[str]:
    """Operator hints for a classified error."""
    kind = error.kind
    if kind == DatabaseErrorKind.DATABASE_LOCKED:
        return [
            "Check for long-running transactions",
            "Verify the database is not open in another process",
            "Consider increasing SAFETUBE_BUSY_TIMEOUT_MS",
        ]
    if kind == DatabaseErrorKind.FOREIGN_KEY_VIOLATION:
        return [
            "Verify the referenced source or video row exists",
            "Check that legacy records reference known source ids",
        ]
    if kind == DatabaseErrorKind.UNIQUE_VIOLATION:
        return [
            "Check the legacy document for duplicate keys",
            "Use an upsert if replacing the existing row is acceptable",
        ]
    if kind == DatabaseErrorKind.CHECK_VIOLATION:
        return ["Check the legacy record against the table's CHECK constraint"]
    if kind == DatabaseErrorKind.DISK_FULL:
        return ["Free up disk space", "Move the data directory to a larger volume"]
    if kind == DatabaseErrorKind.CORRUPTION:
        return [
            "Run PRAGMA integrity_check",
            "Restore the legacy documents from the migration backup",
        ]
    if kind == DatabaseErrorKind.CONNECTION_FAILED:
        return [
            "Verify the database file exists and is accessible",
            "Check file permissions on the data directory",
        ]
    return ["Review the log for the failing statement"]


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryOptions:
    """Backoff parameters; delays are in milliseconds."""

    max_attempts: int = 3
    base_delay: float = 100
    max_delay: float = 5000
    backoff_factor: float = 2.0


@dataclass
class RetryResult(Generic[T]):
    success: bool
    result: T | None = None
    error: StorageError | None = None
    attempts: int = 0
    total_time_ms: float = 0.0
    errors: list[StorageError] = field(default_factory=list)


def compute_delay(attempt: int, options: RetryOptions) -> float:
    """Delay in ms before retrying after *attempt* (1-based) failed."""
    delay = min(
        options.base_delay * options.backoff_factor ** (attempt - 1),
        options.max_delay,
    )
    jitter = random.random() * 0.1 * delay
    return delay + jitter


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    options: RetryOptions | None = None,
    **overrides: Any,
) -> RetryResult[T]:
    """Run *operation*, retrying retryable failures with exponential backoff.

    Never raises for a failure of *operation*; inspect ``success`` on the
    returned :class:`RetryResult`.
    """
    opts = replace(options or RetryOptions(), **overrides)
    started = time.monotonic()
    outcome: RetryResult[T] = RetryResult(success=False)

    for attempt in range(1, opts.max_attempts + 1):
        outcome.attempts = attempt
        try:
            value = await operation()
        except Exception as exc:
            error = classify_error(exc, label)
            outcome.error = error
            outcome.errors.append(error)
            logger.warning(
                "Operation %r failed on attempt %d/%d: %s (kind=%s, code=%s)",
                label, attempt, opts.max_attempts,
                error.message, error.kind.value, error.sqlite_code,
            )
            if attempt < opts.max_attempts and error.retryable:
                delay = compute_delay(attempt, opts)
                logger.debug("Retrying %r in %.0f ms", label, delay)
                await asyncio.sleep(delay / 1000)
                continue
            break
        else:
            outcome.success = True
            outcome.result = value
            outcome.error = None
            outcome.total_time_ms = (time.monotonic() - started) * 1000
            if attempt > 1:
                logger.info(
                    "Operation %r succeeded on attempt %d after %.0f ms",
                    label, attempt, outcome.total_time_ms,
                )
            return outcome

    outcome.total_time_ms = (time.monotonic() - started) * 1000
    logger.error(
        "Operation %r failed after %d attempt(s) in %.0f ms: %s",
        label, outcome.attempts, outcome.total_time_ms,
        outcome.error.message if outcome.error else "unknown error",
    )
    return outcome
