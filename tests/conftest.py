from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import pytest

from tilesync.adapters.sqlite_container import open_container
from tilesync.components.mbtiles.layouts import MbtType
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.core.tile_id import TileKey

Tiles = Dict[Tuple[int, int, int], Optional[bytes]]


def build_container(
    path: Path,
    tiles: Tiles,
    metadata: Optional[Dict[str, str]] = None,
    mbt_type: MbtType = MbtType.FLAT,
) -> Path:
    with open_container(path, create=True) as container, container.transaction():
        store = LogicalTileStore.create(container, mbt_type)
        for (z, x, y), data in tiles.items():
            store.put_tile(TileKey(z, x, y), data)
        for name, value in (metadata or {}).items():
            store.put_metadata(name, value)
    return path


def load_tiles(path: Path) -> Tiles:
    with open_container(path, readonly=True) as container:
        store = LogicalTileStore.open(container)
        return {
            (e.key.zoom_level, e.key.tile_column, e.key.tile_row): e.data
            for e in store.iterate_tiles()
        }


def load_metadata(path: Path) -> Dict[str, str]:
    with open_container(path, readonly=True) as container:
        return LogicalTileStore.open(container).get_metadata()


@pytest.fixture(params=list(MbtType), ids=lambda t: t.value)
def mbt_type(request) -> MbtType:
    return request.param


@pytest.fixture
def make_mbtiles(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        name: str,
        tiles: Tiles,
        metadata: Optional[Dict[str, str]] = None,
        mbt_type: MbtType = MbtType.FLAT,
    ) -> Path:
        return build_container(tmp_path / name, tiles, metadata, mbt_type)

    return _make


@pytest.fixture
def read_tiles() -> Callable[[Path], Tiles]:
    return load_tiles


@pytest.fixture
def read_metadata() -> Callable[[Path], Dict[str, str]]:
    return load_metadata
