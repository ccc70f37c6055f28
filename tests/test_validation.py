import pytest

from tilesync.adapters.sqlite_container import open_container
from tilesync.components.mbtiles.layouts import MbtType
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.components.mbtiles.validation import AggHashMode, IntegrityCheck, validate
from tilesync.core.errors import AggHashMismatch, CorruptTile
from tilesync.core.hashing import EMPTY_AGG_HASH
from tilesync.core.schemas import AGG_TILES_HASH
from tilesync.core.tile_id import TileKey

TILES = {(1, 0, 0): b"a", (1, 1, 1): b"b", (2, 0, 0): None}


def _validate(path, **kwargs):
    readonly = kwargs.get("agg_hash") is not AggHashMode.UPDATE
    with open_container(path, readonly=readonly) as container:
        store = LogicalTileStore.open(container)
        if readonly:
            return validate(store, **kwargs)
        with container.transaction():
            return validate(store, **kwargs)


def test_update_then_verify(make_mbtiles, mbt_type) -> None:
    path = make_mbtiles("t.mbtiles", TILES, mbt_type=mbt_type)
    updated = _validate(path, agg_hash=AggHashMode.UPDATE)
    assert updated.agg_hash_updated
    assert updated.tiles_checked == 3

    verified = _validate(path, integrity=IntegrityCheck.FULL, agg_hash=AggHashMode.VERIFY)
    assert verified.stored_agg_tiles_hash == updated.computed_agg_tiles_hash
    assert not verified.agg_hash_updated


def test_verify_without_stored_hash_only_warns(make_mbtiles) -> None:
    report = _validate(make_mbtiles("t.mbtiles", {}), agg_hash=AggHashMode.VERIFY)
    assert report.stored_agg_tiles_hash is None
    assert report.computed_agg_tiles_hash == EMPTY_AGG_HASH


def test_stale_agg_hash_is_reported(make_mbtiles) -> None:
    path = make_mbtiles("t.mbtiles", TILES, metadata={AGG_TILES_HASH: "0" * 32})
    with pytest.raises(AggHashMismatch):
        _validate(path, agg_hash=AggHashMode.VERIFY)
    assert _validate(path, agg_hash=AggHashMode.OFF).tiles_checked == 3


@pytest.mark.parametrize("mbt_type", [MbtType.FLAT_WITH_HASH, MbtType.NORMALIZED])
def test_corrupt_tile_is_detected(make_mbtiles, mbt_type: MbtType) -> None:
    path = make_mbtiles("t.mbtiles", TILES, mbt_type=mbt_type)
    with open_container(path) as container:
        table = "tiles_with_hash" if mbt_type is MbtType.FLAT_WITH_HASH else "images"
        container.execute(f"UPDATE {table} SET tile_data = ? WHERE tile_data = ?", (b"rotten", b"b"))
    with pytest.raises(CorruptTile) as excinfo:
        _validate(path, agg_hash=AggHashMode.OFF)
    assert excinfo.value.key == TileKey(1, 1, 1)
