"""Tests for storage error classification and the retry policy."""

import sqlite3
from unittest.mock import AsyncMock

import pytest

from safetube.services import error_handler
from safetube.services.error_handler import (
    DatabaseErrorKind,
    RetryOptions,
    StorageError,
    classify_error,
    compute_delay,
    execute_with_retry,
    is_retryable,
    recovery_suggestions,
)


class EngineError(Exception):
    """Stand-in for a driver error carrying an extended result code name."""

    def __init__(self, message, code):
        super().__init__(message)
        self.sqlite_errorname = code


@pytest.fixture
def no_sleep(monkeypatch):
    """Replace the backoff sleep and record the requested delays."""
    sleep = AsyncMock()
    monkeypatch.setattr(error_handler.asyncio, "sleep", sleep)
    return sleep


class TestClassifyError:
    @pytest.mark.parametrize(
        "code, kind",
        [
            ("SQLITE_BUSY", DatabaseErrorKind.DATABASE_LOCKED),
            ("SQLITE_LOCKED", DatabaseErrorKind.DATABASE_LOCKED),
            ("SQLITE_BUSY_TIMEOUT", DatabaseErrorKind.CONNECTION_TIMEOUT),
            ("SQLITE_CONSTRAINT_CHECK", DatabaseErrorKind.CHECK_VIOLATION),
            ("SQLITE_CONSTRAINT_FOREIGNKEY", DatabaseErrorKind.FOREIGN_KEY_VIOLATION),
            ("SQLITE_CONSTRAINT_NOTNULL", DatabaseErrorKind.NOT_NULL_VIOLATION),
            ("SQLITE_CONSTRAINT_UNIQUE", DatabaseErrorKind.UNIQUE_VIOLATION),
            ("SQLITE_CONSTRAINT_PRIMARYKEY", DatabaseErrorKind.UNIQUE_VIOLATION),
            ("SQLITE_CANTOPEN_ISDIR", DatabaseErrorKind.CONNECTION_FAILED),
            ("SQLITE_READONLY_DBMOVED", DatabaseErrorKind.READONLY),
            ("SQLITE_FULL", DatabaseErrorKind.DISK_FULL),
            ("SQLITE_PERM", DatabaseErrorKind.PERMISSION_DENIED),
            ("SQLITE_CORRUPT", DatabaseErrorKind.CORRUPTION),
            ("SQLITE_NOTADB", DatabaseErrorKind.CORRUPTION),
        ],
    )
    def test_engine_codes(self, code, kind):
        classified = classify_error(EngineError("boom", code))
        assert classified.kind == kind
        assert classified.sqlite_code == code
        assert classified.message == "boom"

    def test_code_wins_over_message(self):
        # The message mentions "locked" but the code says disk full
        classified = classify_error(EngineError("locked file", "SQLITE_FULL"))
        assert classified.kind == DatabaseErrorKind.DISK_FULL

    def test_generic_constraint_uses_message(self):
        classified = classify_error(
            EngineError("CHECK constraint failed: x", "SQLITE_CONSTRAINT")
        )
        assert classified.kind == DatabaseErrorKind.CHECK_VIOLATION
        classified = classify_error(EngineError("something else", "SQLITE_CONSTRAINT"))
        assert classified.kind == DatabaseErrorKind.CONSTRAINT_VIOLATION

    def test_sqlite_error_syntax(self):
        classified = classify_error(
            EngineError('near "SELEC": syntax error', "SQLITE_ERROR")
        )
        assert classified.kind == DatabaseErrorKind.SYNTAX_ERROR

    @pytest.mark.parametrize(
        "message, kind",
        [
            ("query timeout exceeded", DatabaseErrorKind.QUERY_TIMEOUT),
            ("database is locked", DatabaseErrorKind.DATABASE_LOCKED),
            ("FOREIGN KEY constraint failed", DatabaseErrorKind.FOREIGN_KEY_VIOLATION),
            ("UNIQUE constraint failed: t.v", DatabaseErrorKind.UNIQUE_VIOLATION),
            ("column v is not unique", DatabaseErrorKind.UNIQUE_VIOLATION),
            ("NOT NULL constraint failed: t.v", DatabaseErrorKind.NOT_NULL_VIOLATION),
            ("something odd", DatabaseErrorKind.UNKNOWN),
        ],
    )
    def test_message_patterns(self, message, kind):
        assert classify_error(Exception(message)).kind == kind

    def test_bare_timeout(self):
        assert classify_error(TimeoutError()).kind == DatabaseErrorKind.QUERY_TIMEOUT

    def test_preserves_original_and_operation(self):
        original = RuntimeError("database is locked")
        classified = classify_error(original, "migrate-sources")
        assert classified.__cause__ is original
        assert classified.operation == "migrate-sources"

    def test_storage_error_passes_through(self):
        error = StorageError("x", DatabaseErrorKind.CORRUPTION)
        assert classify_error(error) is error

    @pytest.mark.asyncio
    async def test_real_unique_violation(self, db):
        await db.execute("CREATE TABLE t (v INTEGER UNIQUE)")
        await db.execute("INSERT INTO t VALUES (1)")
        with pytest.raises(sqlite3.IntegrityError) as info:
            await db.execute("INSERT INTO t VALUES (1)")
        assert classify_error(info.value).kind == DatabaseErrorKind.UNIQUE_VIOLATION


class TestRetryable:
    def test_only_lock_and_timeouts_retry(self):
        assert is_retryable(EngineError("x", "SQLITE_BUSY"))
        assert is_retryable(TimeoutError())
        assert is_retryable(EngineError("x", "SQLITE_BUSY_TIMEOUT"))
        assert not is_retryable(EngineError("x", "SQLITE_CONSTRAINT_UNIQUE"))
        assert not is_retryable(EngineError("x", "SQLITE_CORRUPT"))
        assert not is_retryable(Exception("something odd"))

    def test_recovery_suggestions(self):
        locked = classify_error(EngineError("x", "SQLITE_BUSY"))
        assert any("transaction" in s for s in recovery_suggestions(locked))
        unknown = classify_error(Exception("odd"))
        assert recovery_suggestions(unknown)


class TestComputeDelay:
    def test_exponential_with_bounded_jitter(self):
        options = RetryOptions(base_delay=100, max_delay=5000, backoff_factor=2)
        for attempt, base in [(1, 100), (2, 200), (3, 400)]:
            delay = compute_delay(attempt, options)
            assert base <= delay <= base * 1.1

    def test_capped_at_max_delay(self):
        options = RetryOptions(base_delay=100, max_delay=250, backoff_factor=10)
        assert 250 <= compute_delay(5, options) <= 275


@pytest.mark.asyncio
class TestExecuteWithRetry:
    async def test_success_first_try(self, no_sleep):
        op = AsyncMock(return_value=7)
        result = await execute_with_retry(op, "op")
        assert result.success
        assert result.result == 7
        assert result.attempts == 1
        assert result.error is None
        no_sleep.assert_not_awaited()

    async def test_retry_bound(self, no_sleep):
        op = AsyncMock(side_effect=EngineError("database is locked", "SQLITE_BUSY"))
        result = await execute_with_retry(op, "op", RetryOptions(max_attempts=3))
        assert not result.success
        assert result.attempts == 3
        assert op.await_count == 3
        assert result.error.kind == DatabaseErrorKind.DATABASE_LOCKED
        assert no_sleep.await_count == 2

    async def test_non_retryable_stops_immediately(self, no_sleep):
        op = AsyncMock(side_effect=EngineError("dup", "SQLITE_CONSTRAINT_UNIQUE"))
        result = await execute_with_retry(op, "op", RetryOptions(max_attempts=5))
        assert not result.success
        assert result.attempts == 1
        assert op.await_count == 1
        no_sleep.assert_not_awaited()

    async def test_recovers_after_transient_failure(self, no_sleep):
        op = AsyncMock(side_effect=[TimeoutError(), 42])
        result = await execute_with_retry(op, "op")
        assert result.success
        assert result.result == 42
        assert result.attempts == 2
        assert len(result.errors) == 1

    async def test_overrides_and_sleep_in_seconds(self, no_sleep):
        op = AsyncMock(side_effect=EngineError("busy", "SQLITE_BUSY"))
        result = await execute_with_retry(op, "op", max_attempts=2, base_delay=1000)
        assert result.attempts == 2
        (seconds,), _ = no_sleep.await_args
        assert 1.0 <= seconds <= 1.1
