from __future__ import annotations

from typing import Iterator, Mapping, Optional, Protocol

from tilesync.core.tile_id import TileEntry, TileKey


class BinaryDiffer(Protocol):
    """Pure byte-level delta primitive."""

    def diff(self, old: bytes, new: bytes) -> bytes:
        ...

    def apply(self, old: bytes, patch: bytes) -> bytes:
        ...


class TileSource(Protocol):
    def iterate_tiles(self) -> Iterator[TileEntry]:
        """Yield every tile in ascending (zoom, column, row) order."""
        ...

    def get_tile(self, key: TileKey) -> Optional[bytes]:
        ...

    def get_metadata(self) -> Mapping[str, str]:
        ...


class TileSink(TileSource, Protocol):
    def put_tile(self, key: TileKey, data: Optional[bytes]) -> None:
        ...

    def delete_tile(self, key: TileKey) -> bool:
        ...

    def put_metadata(self, name: str, value: Optional[str]) -> None:
        ...
