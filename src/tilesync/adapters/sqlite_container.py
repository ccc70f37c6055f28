"""SQLite access to a tile container file."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from tilesync.core.errors import IOFault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SqliteContainerConfig:
    path: Path
    readonly: bool = False
    create: bool = False


class SqliteContainer:
    """Connection wrapper providing introspection, queries and transactions.

    Autocommit mode is used so transaction boundaries are explicit: writes
    happen inside ``transaction()``, which issues ``BEGIN IMMEDIATE`` and
    rolls back on any exception, including ``KeyboardInterrupt``.
    """

    def __init__(self, cfg: SqliteContainerConfig):
        self._cfg = cfg
        self._conn = self._connect()
        self._in_transaction = False

    @property
    def path(self) -> Path:
        return self._cfg.path

    def _connect(self) -> sqlite3.Connection:
        path = self._cfg.path
        if not self._cfg.create and not path.exists():
            raise IOFault(f"Tile container not found: {path}")
        if self._cfg.create:
            path.parent.mkdir(parents=True, exist_ok=True)
        mode = "ro" if self._cfg.readonly else ("rwc" if self._cfg.create else "rw")
        uri = f"{path.resolve().as_uri()}?mode={mode}"
        logger.debug("Opening %s (mode=%s)", path, mode)
        try:
            conn = sqlite3.connect(uri, uri=True, isolation_level=None)
            # Fails early on files that are not SQLite databases.
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as exc:
            raise IOFault(f"Cannot open tile container {path}: {exc}") from exc
        return conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteContainer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SqliteContainer({str(self._cfg.path)!r})"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise IOFault(f"{self._cfg.path}: {exc}") from exc

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        return self.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        try:
            return self.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise IOFault(f"{self._cfg.path}: {exc}") from exc

    def iterate(
        self,
        sql: str,
        params: Sequence[Any] = (),
        batch_size: int = 1000,
    ) -> Iterator[tuple]:
        """Stream rows in ``fetchmany`` batches."""
        cur = self.execute(sql, params)
        try:
            while True:
                try:
                    rows = cur.fetchmany(batch_size)
                except sqlite3.Error as exc:
                    raise IOFault(f"{self._cfg.path}: {exc}") from exc
                if not rows:
                    return
                yield from rows
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Catalog introspection
    # ------------------------------------------------------------------

    def object_type(self, name: str) -> Optional[str]:
        """Return 'table' or 'view' for a catalog object, None if absent."""
        row = self.fetch_one(
            "SELECT type FROM sqlite_master WHERE name = ? AND type IN ('table', 'view')",
            (name,),
        )
        return row[0] if row else None

    def columns(self, name: str) -> set[str]:
        return {row[1] for row in self.fetch_all(f"PRAGMA table_info({_quote(name)})")}

    def is_empty(self) -> bool:
        row = self.fetch_one("SELECT count(*) FROM sqlite_master WHERE type IN ('table', 'view')")
        return row[0] == 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @contextmanager
    def transaction(self) -> Iterator["SqliteContainer"]:
        if self._in_transaction:
            raise IOFault(f"{self._cfg.path}: nested transactions are not supported")
        self.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
            self.execute("COMMIT")
        except BaseException:
            logger.debug("Rolling back transaction on %s", self._cfg.path)
            self._conn.rollback()
            raise
        finally:
            self._in_transaction = False


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def open_container(path: Path, readonly: bool = False, create: bool = False) -> SqliteContainer:
    return SqliteContainer(SqliteContainerConfig(path=Path(path), readonly=readonly, create=create))
