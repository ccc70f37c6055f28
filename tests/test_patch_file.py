import pytest

from tilesync.adapters.sqlite_container import open_container
from tilesync.components.sync.patch_file import PatchContainer, is_patch_container
from tilesync.core.errors import IOFault, SchemaError
from tilesync.core.schemas import (
    AGG_TILES_HASH_BEFORE_APPLY,
    DeltaSet,
    MetadataAction,
    MetadataChange,
    PatchAction,
    PatchEncoding,
    PatchRecord,
    PatchType,
)
from tilesync.core.tile_id import TileKey

RECORDS = [
    PatchRecord.removed(TileKey(1, 0, 0)),
    PatchRecord(TileKey(1, 0, 1), PatchAction.CHANGE, PatchEncoding.DELTA, patch_data=b"\x01\x02", result_hash="ab"),
    PatchRecord(TileKey(2, 0, 0), PatchAction.ADD, PatchEncoding.FULL, tile_data=b"z", result_hash="CD"),
    PatchRecord(TileKey(2, 1, 0), PatchAction.CHANGE, PatchEncoding.FULL),
]
CHANGES = [
    MetadataChange("a", MetadataAction.EDIT, "9"),
    MetadataChange("b", MetadataAction.REMOVE),
    MetadataChange("c", MetadataAction.ADD, "3"),
]


def _write(path, delta: DeltaSet) -> None:
    with open_container(path, create=True) as container, container.transaction():
        PatchContainer.create(container).write(delta)


def test_write_and_load(tmp_path) -> None:
    path = tmp_path / "p.mbtiles"
    _write(path, DeltaSet("BEFORE", "AFTER", PatchType.BIN_DIFF_RAW, CHANGES, reversed(RECORDS)))

    with open_container(path, readonly=True) as container:
        assert is_patch_container(container)
        patch = PatchContainer.open(container)
        assert patch.count_records() == 4
        delta = patch.load()
        assert (delta.before, delta.after, delta.patch_type) == ("BEFORE", "AFTER", PatchType.BIN_DIFF_RAW)
        assert delta.metadata_changes == CHANGES
        assert list(delta.records) == RECORDS
        # Full payloads are readable through the tiles view.
        rows = container.fetch_all("SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles")
        assert sorted(rows) == [(2, 0, 0, b"z"), (2, 1, 0, None)]


def test_write_records_counts(tmp_path) -> None:
    with open_container(tmp_path / "p.mbtiles", create=True) as container, container.transaction():
        patch = PatchContainer.create(container)
        assert patch.write_header("B", "A", PatchType.WHOLE, CHANGES) == 3
        counters = patch.write_records(RECORDS)
    assert (counters.written, counters.removed, counters.delta_encoded) == (4, 1, 1)


def test_create_refuses_non_empty_container(make_mbtiles) -> None:
    path = make_mbtiles("t.mbtiles", {})
    with open_container(path) as container:
        with pytest.raises(IOFault):
            PatchContainer.create(container)


def test_open_rejects_tile_container(make_mbtiles) -> None:
    path = make_mbtiles("t.mbtiles", {(0, 0, 0): b"a"})
    with open_container(path, readonly=True) as container:
        assert not is_patch_container(container)
        with pytest.raises(SchemaError):
            PatchContainer.open(container)


def test_missing_checkpoint_is_schema_error(tmp_path) -> None:
    path = tmp_path / "p.mbtiles"
    _write(path, DeltaSet("B", "A", PatchType.WHOLE))
    with open_container(path) as container:
        container.execute("DELETE FROM metadata WHERE name = ?", (AGG_TILES_HASH_BEFORE_APPLY,))
        with pytest.raises(SchemaError):
            PatchContainer.open(container).load()


def test_invalid_record_is_schema_error(tmp_path) -> None:
    path = tmp_path / "p.mbtiles"
    _write(path, DeltaSet("B", "A", PatchType.WHOLE, records=RECORDS[:1]))
    with open_container(path) as container:
        container.execute("UPDATE patches SET encoding = 'full'")
        with pytest.raises(SchemaError):
            list(PatchContainer.open(container).iter_records())
