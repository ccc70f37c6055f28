"""Uniform logical view over every supported MBTiles layout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from tilesync.adapters.sqlite_container import SqliteContainer
from tilesync.components.mbtiles.inspector import detect_type
from tilesync.components.mbtiles.layouts import MbtType, SchemaDescriptor, create_layout
from tilesync.components.mbtiles.models import TilesetSummary, ZoomSummary
from tilesync.core.errors import IOFault
from tilesync.core.geometry import TileFilter
from tilesync.core.hashing import tile_hash
from tilesync.core.schemas import AGG_TILES_HASH
from tilesync.core.tile_id import TileEntry, TileKey, parse_tile_key

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class _LayoutSql:
    """Physical-to-logical mapping of one layout."""

    source: str
    prefix: str
    data_column: str
    hash_column: Optional[str]
    write_table: str


_LAYOUT_SQL = {
    MbtType.FLAT: _LayoutSql(
        source="tiles",
        prefix="",
        data_column="tile_data",
        hash_column=None,
        write_table="tiles",
    ),
    MbtType.FLAT_WITH_HASH: _LayoutSql(
        source="tiles_with_hash",
        prefix="",
        data_column="tile_data",
        hash_column="tile_hash",
        write_table="tiles_with_hash",
    ),
    MbtType.NORMALIZED: _LayoutSql(
        source="map LEFT JOIN images ON images.tile_id = map.tile_id",
        prefix="map.",
        data_column="images.tile_data",
        hash_column="map.tile_id",
        write_table="map",
    ),
}


class ContentIndex:
    """Content hash -> ``images.tile_id`` index of a normalized container.

    Built lazily from the ``images`` table and maintained on every insert.
    Keys are upper-cased so images written by tools that use lower-case hex
    ids are still found and referenced instead of duplicated.
    """

    def __init__(self, container: SqliteContainer, batch_size: int = _DEFAULT_BATCH_SIZE):
        self._container = container
        self._batch_size = batch_size
        self._refs: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._refs is None:
            rows = self._container.iterate(
                "SELECT tile_id FROM images WHERE tile_id IS NOT NULL",
                batch_size=self._batch_size,
            )
            self._refs = {str(tile_id).upper(): tile_id for (tile_id,) in rows}
            logger.debug("Loaded %d image references from %s", len(self._refs), self._container.path)
        return self._refs

    def __len__(self) -> int:
        return len(self._load())

    def lookup(self, digest: str) -> Optional[str]:
        return self._load().get(digest.upper())

    def reference(self, data: bytes) -> str:
        """Return the image id storing ``data``, inserting the image if it is new."""
        digest = tile_hash(data)
        existing = self.lookup(digest)
        if existing is not None:
            return existing
        self._container.execute("INSERT INTO images (tile_id, tile_data) VALUES (?, ?)", (digest, data))
        self._load()[digest] = digest
        return digest

    def invalidate(self) -> None:
        self._refs = None


class LogicalTileStore:
    """Schema-agnostic tile/metadata access to one container.

    All three layouts share this class; behaviour is selected by the layout
    tag the SchemaInspector produced. Iteration is always in ascending
    ``(zoom_level, tile_column, tile_row)`` order.
    """

    def __init__(
        self,
        container: SqliteContainer,
        descriptor: SchemaDescriptor,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ):
        self._container = container
        self._descriptor = descriptor
        self._sql = _LAYOUT_SQL[descriptor.mbt_type]
        self._batch_size = batch_size
        self._index = (
            ContentIndex(container, batch_size) if descriptor.mbt_type is MbtType.NORMALIZED else None
        )

    @classmethod
    def open(cls, container: SqliteContainer, batch_size: int = _DEFAULT_BATCH_SIZE) -> "LogicalTileStore":
        return cls(container, detect_type(container), batch_size=batch_size)

    @classmethod
    def create(
        cls,
        container: SqliteContainer,
        mbt_type: MbtType,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> "LogicalTileStore":
        return cls(container, create_layout(container, mbt_type), batch_size=batch_size)

    @property
    def container(self) -> SqliteContainer:
        return self._container

    @property
    def descriptor(self) -> SchemaDescriptor:
        return self._descriptor

    @property
    def mbt_type(self) -> MbtType:
        return self._descriptor.mbt_type

    @property
    def content_index(self) -> Optional[ContentIndex]:
        return self._index

    def __repr__(self) -> str:
        return f"LogicalTileStore({str(self._container.path)!r}, {self._descriptor})"

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    def _key_columns(self) -> str:
        p = self._sql.prefix
        return f"{p}zoom_level, {p}tile_column, {p}tile_row"

    def _key_where(self) -> str:
        p = self._sql.prefix
        return f"{p}zoom_level = ? AND {p}tile_column = ? AND {p}tile_row = ?"

    def _to_key(self, z: object, x: object, y: object) -> TileKey:
        key = parse_tile_key(z, x, y)
        if key is None:
            raise IOFault(f"{self._container.path}: invalid tile index z={z!r} x={x!r} y={y!r}")
        return key

    def _scan(self, extra_columns: str, tile_filter: Optional[TileFilter]) -> Iterator[tuple]:
        p = self._sql.prefix
        clauses: List[str] = []
        params: List[int] = []
        if tile_filter is not None and tile_filter.min_zoom is not None:
            clauses.append(f"{p}zoom_level >= ?")
            params.append(tile_filter.min_zoom)
        if tile_filter is not None and tile_filter.max_zoom is not None:
            clauses.append(f"{p}zoom_level <= ?")
            params.append(tile_filter.max_zoom)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        keys = self._key_columns()
        sql = f"SELECT {keys}, {extra_columns} FROM {self._sql.source} {where} ORDER BY {keys}"
        return self._container.iterate(sql, params, batch_size=self._batch_size)

    def iterate_tiles(self, tile_filter: Optional[TileFilter] = None) -> Iterator[TileEntry]:
        """Lazily yield tiles in ascending key order; each call restarts the scan."""
        spatial = tile_filter is not None and tile_filter.is_spatial
        for z, x, y, data in self._scan(self._sql.data_column, tile_filter):
            key = self._to_key(z, x, y)
            if spatial and not tile_filter.accepts(key):
                continue
            yield TileEntry(key, None if data is None else bytes(data))

    def iterate_with_stored_hash(self) -> Iterator[Tuple[TileEntry, Optional[str]]]:
        """Yield tiles with the hash the layout stores for them (None for flat)."""
        hash_column = self._sql.hash_column or "NULL"
        for z, x, y, data, stored in self._scan(f"{self._sql.data_column}, {hash_column}", None):
            key = self._to_key(z, x, y)
            yield TileEntry(key, None if data is None else bytes(data)), stored

    def get_entry(self, key: TileKey) -> Optional[TileEntry]:
        row = self._container.fetch_one(
            f"SELECT {self._sql.data_column} FROM {self._sql.source} WHERE {self._key_where()} LIMIT 1",
            (key.zoom_level, key.tile_column, key.tile_row),
        )
        if row is None:
            return None
        data = row[0]
        return TileEntry(key, None if data is None else bytes(data))

    def get_tile(self, key: TileKey) -> Optional[bytes]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def put_tile(self, key: TileKey, data: Optional[bytes]) -> None:
        """Insert or replace the tile at ``key``; ``None`` stores an explicit null tile."""
        self.delete_tile(key)
        params: tuple = (key.zoom_level, key.tile_column, key.tile_row)
        mbt_type = self.mbt_type
        if mbt_type is MbtType.FLAT:
            self._container.execute(
                "INSERT INTO tiles (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
                params + (data,),
            )
        elif mbt_type is MbtType.FLAT_WITH_HASH:
            self._container.execute(
                "INSERT INTO tiles_with_hash (zoom_level, tile_column, tile_row, tile_data, tile_hash) "
                "VALUES (?, ?, ?, ?, ?)",
                params + (data, tile_hash(data)),
            )
        else:
            ref = self._index.reference(data) if data is not None else None
            self._container.execute(
                "INSERT INTO map (zoom_level, tile_column, tile_row, tile_id) VALUES (?, ?, ?, ?)",
                params + (ref,),
            )

    def delete_tile(self, key: TileKey) -> bool:
        # Normalized images are kept until finalize() so later writes can reuse them.
        cur = self._container.execute(
            f"DELETE FROM {self._sql.write_table} "
            "WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (key.zoom_level, key.tile_column, key.tile_row),
        )
        return cur.rowcount > 0

    def finalize(self) -> int:
        """Drop images no longer referenced by any tile; returns the number removed."""
        if self.mbt_type is not MbtType.NORMALIZED:
            return 0
        cur = self._container.execute(
            "DELETE FROM images WHERE tile_id NOT IN "
            "(SELECT tile_id FROM map WHERE tile_id IS NOT NULL)"
        )
        pruned = max(cur.rowcount, 0)
        if pruned:
            logger.debug("Pruned %d orphaned images from %s", pruned, self._container.path)
            self._index.invalidate()
        return pruned

    def count_tiles(self) -> int:
        row = self._container.fetch_one(f"SELECT count(*) FROM {self._sql.source}")
        return int(row[0])

    def is_empty(self) -> bool:
        row = self._container.fetch_one(f"SELECT 1 FROM {self._sql.write_table} LIMIT 1")
        return row is None

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self) -> Dict[str, str]:
        rows = self._container.fetch_all("SELECT name, value FROM metadata WHERE value IS NOT NULL")
        return {name: str(value) for name, value in rows}

    def get_metadata_value(self, name: str) -> Optional[str]:
        row = self._container.fetch_one(
            "SELECT value FROM metadata WHERE name = ? AND value IS NOT NULL LIMIT 1", (name,)
        )
        return str(row[0]) if row else None

    def put_metadata(self, name: str, value: Optional[str]) -> None:
        """Set a metadata value; ``None`` removes the key."""
        self._container.execute("DELETE FROM metadata WHERE name = ?", (name,))
        if value is not None:
            self._container.execute("INSERT INTO metadata (name, value) VALUES (?, ?)", (name, value))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def summary(self) -> TilesetSummary:
        p = self._sql.prefix
        data = self._sql.data_column
        rows = self._container.fetch_all(
            f"""
            SELECT {p}zoom_level,
                   count(*),
                   sum(CASE WHEN {data} IS NULL THEN 1 ELSE 0 END),
                   coalesce(sum(length({data})), 0),
                   min({p}tile_column), max({p}tile_column),
                   min({p}tile_row), max({p}tile_row)
            FROM {self._sql.source}
            GROUP BY {p}zoom_level
            ORDER BY {p}zoom_level
            """
        )
        zooms = [
            ZoomSummary(
                zoom_level=z,
                tile_count=count,
                null_tiles=nulls,
                total_bytes=size,
                min_column=min_x,
                max_column=max_x,
                min_row=min_y,
                max_row=max_y,
            )
            for z, count, nulls, size, min_x, max_x, min_y, max_y in rows
        ]
        return TilesetSummary(
            path=str(self._container.path),
            layout=str(self._descriptor),
            tile_count=sum(zs.tile_count for zs in zooms),
            total_bytes=sum(zs.total_bytes for zs in zooms),
            min_zoom=zooms[0].zoom_level if zooms else None,
            max_zoom=zooms[-1].zoom_level if zooms else None,
            zooms=zooms,
            agg_tiles_hash=self.get_metadata_value(AGG_TILES_HASH),
        )
