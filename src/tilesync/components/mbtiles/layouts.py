"""Physical MBTiles layouts and the DDL that creates them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from tilesync.adapters.sqlite_container import SqliteContainer
from tilesync.core.errors import IOFault


class MbtType(str, Enum):
    FLAT = "flat"
    FLAT_WITH_HASH = "flat-with-hash"
    NORMALIZED = "normalized"


@dataclass(frozen=True)
class SchemaDescriptor:
    mbt_type: MbtType
    # Normalized containers may also expose a tiles_with_hash view.
    hash_view: bool = False

    @property
    def has_stored_hash(self) -> bool:
        return self.mbt_type is not MbtType.FLAT

    def __str__(self) -> str:
        if self.mbt_type is MbtType.NORMALIZED and self.hash_view:
            return f"{self.mbt_type.value} (with hash view)"
        return self.mbt_type.value


TILE_KEY_COLUMNS = ("zoom_level", "tile_column", "tile_row")

_METADATA_DDL = """
CREATE TABLE metadata (
    name TEXT NOT NULL PRIMARY KEY,
    value TEXT
);
"""

_FLAT_DDL = """
CREATE TABLE tiles (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    tile_data BLOB,
    PRIMARY KEY (zoom_level, tile_column, tile_row)
);
"""

_FLAT_WITH_HASH_DDL = """
CREATE TABLE tiles_with_hash (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    tile_data BLOB,
    tile_hash TEXT,
    PRIMARY KEY (zoom_level, tile_column, tile_row)
);
CREATE VIEW tiles AS
    SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles_with_hash;
"""

_NORMALIZED_DDL = """
CREATE TABLE map (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    tile_id TEXT,
    PRIMARY KEY (zoom_level, tile_column, tile_row)
);
CREATE TABLE images (
    tile_data BLOB,
    tile_id TEXT NOT NULL PRIMARY KEY
);
CREATE VIEW tiles AS
    SELECT map.zoom_level AS zoom_level,
           map.tile_column AS tile_column,
           map.tile_row AS tile_row,
           images.tile_data AS tile_data
    FROM map LEFT JOIN images ON images.tile_id = map.tile_id;
CREATE VIEW tiles_with_hash AS
    SELECT map.zoom_level AS zoom_level,
           map.tile_column AS tile_column,
           map.tile_row AS tile_row,
           images.tile_data AS tile_data,
           images.tile_id AS tile_hash
    FROM map LEFT JOIN images ON images.tile_id = map.tile_id;
"""

_LAYOUT_DDL = {
    MbtType.FLAT: _FLAT_DDL,
    MbtType.FLAT_WITH_HASH: _FLAT_WITH_HASH_DDL,
    MbtType.NORMALIZED: _NORMALIZED_DDL,
}


def create_layout(container: SqliteContainer, mbt_type: MbtType) -> SchemaDescriptor:
    """Create the tables of ``mbt_type`` in an empty container."""
    if not container.is_empty():
        raise IOFault(f"{container.path} is not empty, refusing to create a {mbt_type.value} layout")
    statements = [s.strip() for s in (_METADATA_DDL + _LAYOUT_DDL[mbt_type]).split(";") if s.strip()]
    for statement in statements:
        container.execute(statement)
    return SchemaDescriptor(mbt_type=mbt_type, hash_view=mbt_type is MbtType.NORMALIZED)
