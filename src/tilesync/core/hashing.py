"""Per-tile and aggregate content hashes.

Tile hashes are upper-case hex MD5 digests, the same values MBTiles tools
keep in ``tiles_with_hash.tile_hash`` and ``images.tile_id``, so a
normalized container can use them directly as content addresses. Delta
patches are additionally checked with a 64-bit xxh3 digest of the
reconstructed payload.

The aggregate hash folds ``"{z}/{x}/{y}=" + tile_hash + ";"`` for every
tile in ascending key order. A null tile contributes ``-`` in place of its
hash, so an empty store and a store holding one null tile differ.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional

import xxhash

from tilesync.core.interfaces import TileSource
from tilesync.core.tile_id import TileEntry

NULL_TILE_MARKER = "-"
EMPTY_AGG_HASH = hashlib.md5(b"").hexdigest().upper()


def tile_hash(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return hashlib.md5(data).hexdigest().upper()


def delta_check_hash(data: bytes) -> str:
    return xxhash.xxh3_64(data).hexdigest()


def fold_entries(entries: Iterable[TileEntry]) -> str:
    """Fold tile hashes over entries that are already in ascending key order."""
    agg = hashlib.md5()
    for entry in entries:
        key = entry.key
        digest = tile_hash(entry.data) or NULL_TILE_MARKER
        agg.update(f"{key.zoom_level}/{key.tile_column}/{key.tile_row}={digest};".encode("ascii"))
    return agg.hexdigest().upper()


def aggregate_hash(store: TileSource) -> str:
    return fold_entries(store.iterate_tiles())
