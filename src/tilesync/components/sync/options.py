from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tilesync.components.mbtiles.layouts import MbtType
from tilesync.core.geometry import TileFilter


class CopyType(str, Enum):
    ALL = "all"
    TILES = "tiles"
    METADATA = "metadata"

    @property
    def copy_tiles(self) -> bool:
        return self in (CopyType.ALL, CopyType.TILES)

    @property
    def copy_metadata(self) -> bool:
        return self in (CopyType.ALL, CopyType.METADATA)


class OnDuplicate(str, Enum):
    """What to do when the destination already holds a tile at a copied key."""

    OVERRIDE = "override"
    IGNORE = "ignore"
    ABORT = "abort"


@dataclass(frozen=True)
class CopyOptions:
    tile_filter: Optional[TileFilter] = None
    copy_type: CopyType = CopyType.ALL
    on_duplicate: OnDuplicate = OnDuplicate.OVERRIDE
    # Layout of a newly created destination; defaults to the source layout.
    dst_type: Optional[MbtType] = None
