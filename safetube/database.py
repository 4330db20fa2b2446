import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Iterable, Sequence

import aiosqlite

logger = logging.getLogger(__name__)

Statement = tuple[str, Sequence[Any]]

# ---------------------------------------------------------------------------
# Helper: dict row factory
# ---------------------------------------------------------------------------


def _dict_row_factory(cursor: aiosqlite.Cursor, row: tuple) -> dict:
    """Convert a sqlite3 Row into a plain dict."""
    columns = [description[0] for description in cursor.description]
    return dict(zip(columns, row))


# ---------------------------------------------------------------------------
# Store handle
# ---------------------------------------------------------------------------


class Database:
    """Owns the single aiosqlite connection used by the process.

    The entry point calls :meth:`open` once and :meth:`close` on shutdown;
    every component receives the instance through its constructor.

    Usage:
        db = Database(settings.db_path)
        await db.open()
        async with db.transaction():
            await db.execute(...)
        await db.close()
    """

    def __init__(self, path: str | Path, busy_timeout_ms: int = 30000) -> None:
        self.path = path if str(path) == ":memory:" else Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: aiosqlite.Connection | None = None
        self._tx_depth = 0
        self._tx_owner: asyncio.Task | None = None
        self._tx_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open")
        return self._conn

    async def open(self) -> "Database":
        """Open the connection and apply the session pragmas.

        Foreign key enforcement is a per-connection switch in SQLite, so it
        is turned on here rather than in the schema.
        """
        if self._conn is not None:
            return self
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: transactions are issued explicitly below
        self._conn = await aiosqlite.connect(str(self.path), isolation_level=None)
        self._conn.row_factory = _dict_row_factory
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.execute("PRAGMA recursive_triggers=ON")
        await self._conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        logger.info("Opened database %s", self.path)
        return self

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        self._tx_depth = 0
        logger.info("Closed database %s", self.path)

    async def __aenter__(self) -> "Database":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -- statements --------------------------------------------------------

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        return await self.conn.execute(sql, tuple(params))

    async def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        await self.conn.executemany(sql, [tuple(r) for r in rows])

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        cursor = await self.conn.execute(sql, tuple(params))
        row = await cursor.fetchone()
        await cursor.close()
        return row

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        cursor = await self.conn.execute(sql, tuple(params))
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)

    async def fetchval(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Return the first column of the first row, or None."""
        row = await self.fetchone(sql, params)
        if row is None:
            return None
        return next(iter(row.values()))

    # -- transactions ------------------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        """Run the enclosed statements atomically.

        Transactions from different tasks are serialized on the handle.
        Nested use within the owning task becomes a SAVEPOINT so an inner
        failure only rolls back the inner block.
        """
        task = asyncio.current_task()
        if self._tx_depth > 0 and self._tx_owner is task:
            async with self._savepoint():
                yield self
            return

        async with self._tx_lock:
            await self.conn.execute("BEGIN")
            self._tx_owner = task
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                await self.conn.execute("ROLLBACK")
                raise
            else:
                await self.conn.execute("COMMIT")
            finally:
                self._tx_depth = 0
                self._tx_owner = None

    @asynccontextmanager
    async def _savepoint(self):
        name = f"sp_{self._tx_depth}"
        await self.conn.execute(f"SAVEPOINT {name}")
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth -= 1
            await self.conn.execute(f"ROLLBACK TO {name}")
            await self.conn.execute(f"RELEASE {name}")
            raise
        else:
            self._tx_depth -= 1
            await self.conn.execute(f"RELEASE {name}")

    async def run_transaction(self, statements: Iterable[Statement]) -> int:
        """Execute a batch of ``(sql, params)`` pairs in one transaction.

        Returns the number of statements executed.
        """
        count = 0
        async with self.transaction():
            for sql, params in statements:
                await self.conn.execute(sql, tuple(params))
                count += 1
        logger.debug("Transaction completed with %d statements", count)
        return count

    # -- introspection -----------------------------------------------------

    async def table_names(self) -> list[str]:
        rows = await self.fetchall(
            "SELECT name FROM sqlite_master "
            "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in rows]

    async def index_names(self) -> list[str]:
        rows = await self.fetchall(
            "SELECT name FROM sqlite_master "
            "WHERE type='index' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in rows]

    async def foreign_keys_enabled(self) -> bool:
        return bool(await self.fetchval("PRAGMA foreign_keys"))
