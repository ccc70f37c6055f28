"""On-disk form of a DeltaSet.

A patch is itself a SQLite container::

    metadata(name, value, change)   checkpoints, patch_type and metadata changes
    patches(zoom_level, tile_column, tile_row, action, encoding,
            tile_data, patch_data, tile_hash)
    tiles                           view over full-payload rows

Checkpoint and control rows have ``change`` NULL; metadata changes carry
their action there, with a NULL value for removals.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional, Tuple

from tilesync.adapters.sqlite_container import SqliteContainer
from tilesync.core.errors import IOFault, SchemaError
from tilesync.core.schemas import (
    AGG_TILES_HASH_AFTER_APPLY,
    AGG_TILES_HASH_BEFORE_APPLY,
    PATCH_TYPE_KEY,
    DeltaSet,
    MetadataAction,
    MetadataChange,
    PatchAction,
    PatchEncoding,
    PatchRecord,
    PatchType,
    TileCounters,
)
from tilesync.core.tile_id import parse_tile_key

logger = logging.getLogger(__name__)

_PATCH_DDL = (
    """
    CREATE TABLE metadata (
        name TEXT NOT NULL PRIMARY KEY,
        value TEXT,
        change TEXT
    )
    """,
    """
    CREATE TABLE patches (
        zoom_level INTEGER NOT NULL,
        tile_column INTEGER NOT NULL,
        tile_row INTEGER NOT NULL,
        action TEXT NOT NULL,
        encoding TEXT NOT NULL,
        tile_data BLOB,
        patch_data BLOB,
        tile_hash TEXT,
        PRIMARY KEY (zoom_level, tile_column, tile_row)
    )
    """,
    """
    CREATE VIEW tiles AS
        SELECT zoom_level, tile_column, tile_row, tile_data
        FROM patches WHERE encoding = 'full'
    """,
)

_PATCH_COLUMNS = {
    "zoom_level",
    "tile_column",
    "tile_row",
    "action",
    "encoding",
    "tile_data",
    "patch_data",
    "tile_hash",
}


class PatchContainer:
    """Reads and writes DeltaSets stored in a SQLite container."""

    def __init__(self, container: SqliteContainer, batch_size: int = 1000):
        self._container = container
        self._batch_size = batch_size

    @property
    def container(self) -> SqliteContainer:
        return self._container

    @classmethod
    def create(cls, container: SqliteContainer, batch_size: int = 1000) -> "PatchContainer":
        if not container.is_empty():
            raise IOFault(f"{container.path} is not empty, refusing to write a patch into it")
        logger.debug("Creating patch container %s", container.path)
        for statement in _PATCH_DDL:
            container.execute(statement)
        return cls(container, batch_size)

    @classmethod
    def open(cls, container: SqliteContainer, batch_size: int = 1000) -> "PatchContainer":
        if not is_patch_container(container):
            raise SchemaError(f"{container.path} is not a tile patch container")
        return cls(container, batch_size)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_header(
        self,
        before: str,
        after: str,
        patch_type: PatchType,
        metadata_changes: Iterable[MetadataChange],
    ) -> int:
        rows: List[Tuple[str, Optional[str], Optional[str]]] = [
            (AGG_TILES_HASH_BEFORE_APPLY, before, None),
            (AGG_TILES_HASH_AFTER_APPLY, after, None),
            (PATCH_TYPE_KEY, patch_type.value, None),
        ]
        rows.extend((c.name, c.value, c.action.value) for c in metadata_changes)
        for row in rows:
            self._container.execute(
                "INSERT OR REPLACE INTO metadata (name, value, change) VALUES (?, ?, ?)", row
            )
        return len(rows) - 3

    def append(self, record: PatchRecord) -> None:
        key = record.key
        self._container.execute(
            """
            INSERT INTO patches (
                zoom_level, tile_column, tile_row, action, encoding,
                tile_data, patch_data, tile_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                key.zoom_level,
                key.tile_column,
                key.tile_row,
                record.action.value,
                record.encoding.value,
                record.tile_data,
                record.patch_data,
                record.result_hash,
            ),
        )

    def write_records(self, records: Iterable[PatchRecord]) -> TileCounters:
        counters = TileCounters()
        for record in records:
            self.append(record)
            counters.written += 1
            if record.encoding is PatchEncoding.NONE:
                counters.removed += 1
            elif record.encoding is PatchEncoding.DELTA:
                counters.delta_encoded += 1
        return counters

    def write(self, delta: DeltaSet) -> TileCounters:
        self.write_header(delta.before, delta.after, delta.patch_type, delta.metadata_changes)
        return self.write_records(delta.records)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_header(self) -> Tuple[str, str, PatchType, List[MetadataChange]]:
        rows = self._container.fetch_all("SELECT name, value, change FROM metadata ORDER BY name")
        control = {name: value for name, value, change in rows if change is None}
        before = control.get(AGG_TILES_HASH_BEFORE_APPLY)
        after = control.get(AGG_TILES_HASH_AFTER_APPLY)
        if before is None or after is None:
            raise SchemaError(f"{self._container.path}: patch is missing its aggregate hash checkpoints")
        try:
            patch_type = PatchType(control.get(PATCH_TYPE_KEY, PatchType.WHOLE.value))
            changes = [
                MetadataChange(name, MetadataAction(change), value)
                for name, value, change in rows
                if change is not None
            ]
        except ValueError as exc:
            raise SchemaError(f"{self._container.path}: invalid patch metadata: {exc}") from exc
        return before, after, patch_type, changes

    def iter_records(self) -> Iterator[PatchRecord]:
        rows = self._container.iterate(
            """
            SELECT zoom_level, tile_column, tile_row, action, encoding,
                   tile_data, patch_data, tile_hash
            FROM patches
            ORDER BY zoom_level, tile_column, tile_row
            """,
            batch_size=self._batch_size,
        )
        for z, x, y, action, encoding, tile_data, patch_data, result_hash in rows:
            key = parse_tile_key(z, x, y)
            if key is None:
                raise SchemaError(f"{self._container.path}: invalid patch tile index {z!r}/{x!r}/{y!r}")
            try:
                yield PatchRecord(
                    key=key,
                    action=PatchAction(action),
                    encoding=PatchEncoding(encoding),
                    tile_data=None if tile_data is None else bytes(tile_data),
                    patch_data=None if patch_data is None else bytes(patch_data),
                    result_hash=result_hash,
                )
            except ValueError as exc:
                raise SchemaError(f"{self._container.path}: invalid patch record at {key}: {exc}") from exc

    def load(self) -> DeltaSet:
        """DeltaSet whose records stream lazily from this container."""
        before, after, patch_type, changes = self.read_header()
        return DeltaSet(
            before=before,
            after=after,
            patch_type=patch_type,
            metadata_changes=changes,
            records=self.iter_records(),
        )

    def count_records(self) -> int:
        return int(self._container.fetch_one("SELECT count(*) FROM patches")[0])


def is_patch_container(container: SqliteContainer) -> bool:
    if container.object_type("patches") != "table" or container.object_type("metadata") != "table":
        return False
    if not _PATCH_COLUMNS <= container.columns("patches"):
        return False
    return {"name", "value", "change"} <= container.columns("metadata")
