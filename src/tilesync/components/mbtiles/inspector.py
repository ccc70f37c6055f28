from __future__ import annotations

import logging

from tilesync.adapters.sqlite_container import SqliteContainer
from tilesync.components.mbtiles.layouts import TILE_KEY_COLUMNS, MbtType, SchemaDescriptor
from tilesync.core.errors import SchemaError

logger = logging.getLogger(__name__)

_MAP_COLUMNS = {*TILE_KEY_COLUMNS, "tile_id"}
_IMAGES_COLUMNS = {"tile_data", "tile_id"}
_TILES_WITH_HASH_COLUMNS = {*TILE_KEY_COLUMNS, "tile_data", "tile_hash"}
_TILES_COLUMNS = {*TILE_KEY_COLUMNS, "tile_data"}
_METADATA_COLUMNS = {"name", "value"}


class SchemaInspector:
    """Classifies the physical layout of a tile container.

    Only catalog metadata is read (``sqlite_master`` and ``PRAGMA
    table_info``). Layouts are checked from the most specific to the least
    specific, because normalized and hash-augmented containers also expose
    a ``tiles`` view that would otherwise look flat.
    """

    def __init__(self, container: SqliteContainer):
        self._container = container

    def _has(self, name: str, kind: str, columns: set[str]) -> bool:
        if self._container.object_type(name) != kind:
            return False
        return columns <= self._container.columns(name)

    def detect(self) -> SchemaDescriptor:
        if not self._has("metadata", "table", _METADATA_COLUMNS):
            raise SchemaError(f"{self._container.path}: missing metadata(name, value) table")

        if self._has("map", "table", _MAP_COLUMNS) and self._has("images", "table", _IMAGES_COLUMNS):
            hash_view = self._has("tiles_with_hash", "view", _TILES_WITH_HASH_COLUMNS)
            descriptor = SchemaDescriptor(MbtType.NORMALIZED, hash_view=hash_view)
        elif self._has("tiles_with_hash", "table", _TILES_WITH_HASH_COLUMNS):
            descriptor = SchemaDescriptor(MbtType.FLAT_WITH_HASH)
        elif self._has("tiles", "table", _TILES_COLUMNS):
            descriptor = SchemaDescriptor(MbtType.FLAT)
        else:
            raise SchemaError(f"{self._container.path}: unrecognized tile layout")

        logger.debug("Detected %s layout in %s", descriptor, self._container.path)
        return descriptor


def detect_type(container: SqliteContainer) -> SchemaDescriptor:
    return SchemaInspector(container).detect()
