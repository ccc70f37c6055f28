from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, order=True)
class TileKey:
    """Logical tile address; ordering is the canonical iteration order."""

    zoom_level: int
    tile_column: int
    tile_row: int

    def __post_init__(self) -> None:
        for name in ("zoom_level", "tile_column", "tile_row"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    def __str__(self) -> str:
        return f"{self.zoom_level}/{self.tile_column}/{self.tile_row}"


@dataclass(frozen=True)
class TileEntry:
    key: TileKey
    data: Optional[bytes]


def invert_y(zoom_level: int, y: int) -> int:
    """Convert between TMS rows (as stored in MBTiles) and XYZ rows."""
    return (1 << zoom_level) - 1 - y


def parse_tile_key(z: object, x: object, y: object) -> Optional[TileKey]:
    """Return a TileKey for raw row values, or None if they are not a valid index."""
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (z, x, y)):
        return None
    if z < 0 or x < 0 or y < 0:
        return None
    return TileKey(z, x, y)
