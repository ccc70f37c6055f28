import pytest

from tilesync.adapters.sqlite_container import open_container
from tilesync.components.mbtiles.layouts import MbtType
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.components.mbtiles.validation import AggHashMode
from tilesync.components.sync.engine import CopyEngine
from tilesync.components.sync.options import CopyOptions, CopyType, OnDuplicate
from tilesync.components.sync.settings import TileSyncSettings
from tilesync.core.errors import BaseMismatch
from tilesync.core.geometry import BBox, TileFilter
from tilesync.core.hashing import aggregate_hash
from tilesync.core.schemas import (
    AGG_TILES_HASH,
    AGG_TILES_HASH_AFTER_APPLY,
    AGG_TILES_HASH_BEFORE_APPLY,
    OperationStatus,
    PatchType,
)

BIG_TILE = bytes(range(256)) * 16
BIG_TILE_EDITED = BIG_TILE[:1000] + b"\xff\xfe" + BIG_TILE[1002:]

SOURCE_TILES = {(0, 0, 0): b"world", (1, 0, 0): b"south-west", (1, 1, 1): b"north-east", (2, 0, 0): None}
SOURCE_META = {"name": "source", "format": "png"}
BASE_TILES = {(0, 0, 0): b"root", (3, 1, 1): BIG_TILE, (3, 1, 2): b"gone", (3, 2, 2): b"old"}
TARGET_TILES = {(0, 0, 0): b"root", (3, 1, 1): BIG_TILE_EDITED, (3, 2, 2): None, (4, 0, 0): b"new"}


@pytest.fixture
def engine() -> CopyEngine:
    return CopyEngine(TileSyncSettings(progress=False))


def _stored_hash(path) -> str:
    with open_container(path, readonly=True) as container:
        return aggregate_hash(LogicalTileStore.open(container))


def _layout(path) -> MbtType:
    with open_container(path, readonly=True) as container:
        return LogicalTileStore.open(container).mbt_type


# ----------------------------------------------------------------------
# copy
# ----------------------------------------------------------------------


def test_copy_to_new_destination(engine, make_mbtiles, read_tiles, read_metadata, tmp_path) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES, SOURCE_META)
    destination = tmp_path / "out" / "dst.mbtiles"

    result = engine.copy(source, destination)

    assert result.ok and result.exit_code == 0
    assert result.tiles.read == result.tiles.written == 4
    assert read_tiles(destination) == SOURCE_TILES
    metadata = read_metadata(destination)
    assert metadata.pop(AGG_TILES_HASH) == result.agg_tiles_hash == _stored_hash(source)
    assert metadata == SOURCE_META


@pytest.mark.parametrize("dst_type", list(MbtType), ids=lambda t: t.value)
def test_copy_converts_layout_and_keeps_hash(engine, make_mbtiles, read_tiles, tmp_path, mbt_type, dst_type) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES, mbt_type=mbt_type)
    destination = tmp_path / "dst.mbtiles"

    result = engine.copy(source, destination, CopyOptions(dst_type=dst_type))

    assert result.ok
    assert _layout(destination) is dst_type
    assert read_tiles(destination) == SOURCE_TILES
    assert result.agg_tiles_hash == _stored_hash(source)


def test_copy_filters_by_zoom_and_bbox(engine, make_mbtiles, read_tiles, tmp_path) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES)

    by_zoom = engine.copy(source, tmp_path / "zoom.mbtiles", CopyOptions(tile_filter=TileFilter(max_zoom=0)))
    by_bbox = engine.copy(
        source,
        tmp_path / "bbox.mbtiles",
        CopyOptions(tile_filter=TileFilter(min_zoom=1, max_zoom=1, bbox=BBox(-10, -10, -5, -5))),
    )

    assert by_zoom.ok and by_bbox.ok
    assert read_tiles(tmp_path / "zoom.mbtiles") == {(0, 0, 0): b"world"}
    assert read_tiles(tmp_path / "bbox.mbtiles") == {(1, 0, 0): b"south-west"}
    assert by_bbox.tiles.read == 1


def test_copy_metadata_only(engine, make_mbtiles, read_tiles, read_metadata, tmp_path) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES, SOURCE_META)
    destination = tmp_path / "dst.mbtiles"

    result = engine.copy(source, destination, CopyOptions(copy_type=CopyType.METADATA))

    assert result.ok
    assert read_tiles(destination) == {}
    assert read_metadata(destination) == SOURCE_META
    assert result.metadata_changes == 2


def test_copy_on_duplicate_modes(engine, make_mbtiles, read_tiles) -> None:
    source = make_mbtiles("src.mbtiles", {(0, 0, 0): b"new", (1, 0, 0): b"same"})
    existing = {(0, 0, 0): b"old", (1, 0, 0): b"same", (1, 1, 1): b"kept"}

    ignored = make_mbtiles("ignore.mbtiles", existing)
    result = engine.copy(source, ignored, CopyOptions(on_duplicate=OnDuplicate.IGNORE))
    assert result.ok and result.tiles.skipped == 2
    assert read_tiles(ignored) == existing

    overridden = make_mbtiles("override.mbtiles", existing)
    result = engine.copy(source, overridden, CopyOptions(on_duplicate=OnDuplicate.OVERRIDE))
    assert result.ok and result.tiles.written == 2
    assert read_tiles(overridden) == {**existing, (0, 0, 0): b"new"}


def test_copy_abort_on_conflicting_tile_rolls_back(engine, make_mbtiles, read_tiles, read_metadata) -> None:
    source = make_mbtiles("src.mbtiles", {(1, 0, 0): b"same", (2, 0, 0): b"theirs"}, {"name": "src"})
    existing = {(1, 0, 0): b"same", (2, 0, 0): b"ours"}
    destination = make_mbtiles("dst.mbtiles", existing, {"name": "src"})

    result = engine.copy(source, destination, CopyOptions(on_duplicate=OnDuplicate.ABORT))

    assert result.status is OperationStatus.CONFLICT
    assert result.fault_kind == "TileConflict"
    assert result.exit_code == 4
    assert read_tiles(destination) == existing
    assert read_metadata(destination) == {"name": "src"}


def test_copy_abort_on_metadata_conflict(engine, make_mbtiles) -> None:
    source = make_mbtiles("src.mbtiles", {}, {"name": "src"})
    destination = make_mbtiles("dst.mbtiles", {}, {"name": "dst"})

    result = engine.copy(source, destination, CopyOptions(on_duplicate=OnDuplicate.ABORT))

    assert result.status is OperationStatus.CONFLICT
    assert result.fault_kind == "MetadataConflict"


def test_copy_into_itself_is_refused(engine, make_mbtiles, read_tiles) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES)
    result = engine.copy(source, source)
    assert result.status is OperationStatus.IO_FAULT
    assert read_tiles(source) == SOURCE_TILES


def test_failed_copy_leaves_no_destination(engine, tmp_path) -> None:
    unsupported = tmp_path / "odd.mbtiles"
    with open_container(unsupported, create=True) as container:
        container.execute("CREATE TABLE metadata (name TEXT, value TEXT)")
    destination = tmp_path / "dst.mbtiles"

    missing = engine.copy(tmp_path / "missing.mbtiles", destination)
    schema = engine.copy(unsupported, destination)

    assert missing.status is OperationStatus.IO_FAULT and missing.exit_code == 1
    assert schema.status is OperationStatus.SCHEMA_UNSUPPORTED and schema.exit_code == 2
    assert not destination.exists()


def test_interrupted_copy_rolls_back(engine, make_mbtiles, read_tiles, monkeypatch, tmp_path) -> None:
    source = make_mbtiles("src.mbtiles", SOURCE_TILES)
    existing = make_mbtiles("existing.mbtiles", {(5, 5, 5): b"keep"})
    original_put = LogicalTileStore.put_tile
    calls = []

    def interrupting_put(self, key, data):
        calls.append(key)
        if len(calls) == 2:
            raise KeyboardInterrupt
        original_put(self, key, data)

    monkeypatch.setattr(LogicalTileStore, "put_tile", interrupting_put)

    with pytest.raises(KeyboardInterrupt):
        engine.copy(source, tmp_path / "new.mbtiles")
    assert not (tmp_path / "new.mbtiles").exists()

    calls.clear()
    with pytest.raises(KeyboardInterrupt):
        engine.copy(source, existing)
    monkeypatch.undo()
    assert read_tiles(existing) == {(5, 5, 5): b"keep"}


# ----------------------------------------------------------------------
# diff / apply-patch
# ----------------------------------------------------------------------


@pytest.mark.parametrize("patch_type", list(PatchType), ids=lambda t: t.value)
def test_diff_then_apply_in_place(engine, make_mbtiles, read_tiles, read_metadata, tmp_path, mbt_type, patch_type) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES, {"name": "base", "version": "1"}, mbt_type)
    target = make_mbtiles("target.mbtiles", TARGET_TILES, {"name": "target"}, MbtType.FLAT)
    patch = tmp_path / "changes.mbtiles"

    diffed = engine.diff(base, target, patch, patch_type)
    assert diffed.ok
    assert diffed.tiles.written == 4
    assert diffed.tiles.delta_encoded == (1 if patch_type is PatchType.BIN_DIFF_RAW else 0)
    assert diffed.metadata_changes == 2

    applied = engine.apply_patch(base, patch)

    assert applied.ok
    assert read_tiles(base) == TARGET_TILES
    metadata = read_metadata(base)
    assert metadata[AGG_TILES_HASH] == diffed.agg_tiles_hash == _stored_hash(target)
    assert AGG_TILES_HASH_BEFORE_APPLY not in metadata
    assert AGG_TILES_HASH_AFTER_APPLY not in metadata
    assert metadata["name"] == "target" and "version" not in metadata
    assert _layout(base) is mbt_type


def test_diff_of_identical_stores_writes_empty_patch(engine, make_mbtiles, tmp_path) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES, {"name": "x"})
    result = engine.diff(base, base, tmp_path / "noop.mbtiles")
    assert result.ok
    assert result.tiles.written == 0 and result.metadata_changes == 0
    assert result.details["before"] == result.details["after"]


def test_apply_to_separate_destination(engine, make_mbtiles, read_tiles, tmp_path) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES, mbt_type=MbtType.NORMALIZED)
    target = make_mbtiles("target.mbtiles", TARGET_TILES)
    patch = tmp_path / "changes.mbtiles"
    assert engine.diff(base, target, patch).ok
    output = tmp_path / "patched.mbtiles"

    result = engine.apply_patch(base, patch, output)

    assert result.ok
    assert read_tiles(output) == TARGET_TILES
    assert read_tiles(base) == BASE_TILES
    assert _layout(output) is MbtType.NORMALIZED


def test_apply_with_wrong_base_leaves_no_destination(engine, make_mbtiles, read_tiles, tmp_path) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES)
    target = make_mbtiles("target.mbtiles", TARGET_TILES)
    other = make_mbtiles("other.mbtiles", {(0, 0, 0): b"unrelated"})
    patch = tmp_path / "changes.mbtiles"
    assert engine.diff(base, target, patch).ok
    output = tmp_path / "patched.mbtiles"

    separate = engine.apply_patch(other, patch, output)
    in_place = engine.apply_patch(other, patch)

    for result in (separate, in_place):
        assert result.status is OperationStatus.INTEGRITY_FAULT
        assert result.fault_kind == "BaseMismatch"
        assert result.exit_code == 3
    assert not output.exists()
    assert read_tiles(other) == {(0, 0, 0): b"unrelated"}
    with pytest.raises(BaseMismatch):
        in_place.raise_for_status()


def test_corrupted_patch_file_aborts_apply(engine, make_mbtiles, read_tiles, tmp_path) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES)
    target = make_mbtiles("target.mbtiles", TARGET_TILES)
    patch = tmp_path / "changes.mbtiles"
    assert engine.diff(base, target, patch).ok
    with open_container(patch) as container:
        (patch_data,) = container.fetch_one("SELECT patch_data FROM patches WHERE encoding = 'delta'")
        corrupted = bytes([patch_data[0] ^ 0xFF]) + bytes(patch_data[1:])
        container.execute("UPDATE patches SET patch_data = ? WHERE encoding = 'delta'", (corrupted,))

    result = engine.apply_patch(base, patch)

    assert result.status is OperationStatus.INTEGRITY_FAULT
    assert result.fault_kind == "PatchMismatch"
    assert read_tiles(base) == BASE_TILES


def test_diff_refuses_existing_patch_file(engine, make_mbtiles, tmp_path) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES)
    patch = tmp_path / "exists.mbtiles"
    patch.write_bytes(b"keep me")

    result = engine.diff(base, base, patch)

    assert result.status is OperationStatus.IO_FAULT
    assert patch.read_bytes() == b"keep me"


def test_apply_rejects_non_patch_file(engine, make_mbtiles) -> None:
    base = make_mbtiles("base.mbtiles", BASE_TILES)
    not_a_patch = make_mbtiles("plain.mbtiles", TARGET_TILES)
    result = engine.apply_patch(base, not_a_patch)
    assert result.status is OperationStatus.SCHEMA_UNSUPPORTED


def test_validate_reports_details(engine, make_mbtiles) -> None:
    path = make_mbtiles("t.mbtiles", SOURCE_TILES)
    updated = engine.validate(path, agg_hash=AggHashMode.UPDATE)
    verified = engine.validate(path)
    assert updated.ok and verified.ok
    assert updated.details["agg_hash_updated"] is True
    assert verified.agg_tiles_hash == updated.agg_tiles_hash
    assert verified.tiles.read == 4
