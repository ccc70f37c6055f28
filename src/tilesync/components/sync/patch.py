"""Applies a DeltaSet to a base store with before/after hash verification."""

from __future__ import annotations

import logging
from typing import Optional

from tilesync.adapters.bindiff import DeltaDecodeError, build_differ
from tilesync.components.mbtiles.metadata import MergePolicy, MetadataMerger
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.core.errors import BaseMismatch, PatchMismatch, ResultMismatch
from tilesync.core.hashing import aggregate_hash, delta_check_hash, tile_hash
from tilesync.core.interfaces import BinaryDiffer
from tilesync.core.schemas import (
    AGG_TILES_HASH,
    AGG_TILES_HASH_AFTER_APPLY,
    AGG_TILES_HASH_BEFORE_APPLY,
    DeltaSet,
    PatchEncoding,
    PatchRecord,
    TileCounters,
)

logger = logging.getLogger(__name__)


def _same_hash(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return a is b
    return a.upper() == b.upper()


class PatchApplier:
    """Reconstructs a target store from a base store and a DeltaSet.

    The applier mutates ``store`` in place and raises on the first fault;
    the caller owns the transaction and must roll it back on any exception
    so that no partial application is ever committed.
    """

    def __init__(
        self,
        differ: Optional[BinaryDiffer] = None,
        metadata_policy: MergePolicy = MergePolicy.STRICT,
    ):
        self._differ = differ or build_differ()
        self._merger = MetadataMerger(metadata_policy)

    def apply(self, store: LogicalTileStore, delta: DeltaSet) -> TileCounters:
        actual = aggregate_hash(store)
        if not _same_hash(actual, delta.before):
            raise BaseMismatch(delta.before, actual)
        logger.debug("Base store matches patch base %s", actual)

        counters = TileCounters()
        previous = None
        for record in delta.records:
            if previous is not None and not previous < record.key:
                raise PatchMismatch(record.key, f"records out of order (after {previous})")
            previous = record.key
            counters.read += 1
            self._apply_record(store, record, counters)

        changed = self._merger.apply(store, delta.metadata_changes)
        logger.debug("Applied %d metadata changes", changed)
        store.finalize()

        result = aggregate_hash(store)
        if not _same_hash(result, delta.after):
            raise ResultMismatch(delta.after, result)

        store.put_metadata(AGG_TILES_HASH, result)
        store.put_metadata(AGG_TILES_HASH_BEFORE_APPLY, None)
        store.put_metadata(AGG_TILES_HASH_AFTER_APPLY, None)
        logger.info(
            "Applied %d tile records (%d via delta, %d removals); result hash %s",
            counters.read,
            counters.delta_encoded,
            counters.removed,
            result,
        )
        return counters

    def _apply_record(self, store: LogicalTileStore, record: PatchRecord, counters: TileCounters) -> None:
        key = record.key
        if record.encoding is PatchEncoding.NONE:
            store.delete_tile(key)
            counters.removed += 1
            return

        if record.encoding is PatchEncoding.FULL:
            computed = tile_hash(record.tile_data)
            if not _same_hash(computed, record.result_hash):
                raise PatchMismatch(key, f"payload hashes to {computed}, expected {record.result_hash}")
            store.put_tile(key, record.tile_data)
            counters.written += 1
            return

        current = store.get_tile(key)
        if current is None:
            raise PatchMismatch(key, "delta has no base tile to apply to")
        try:
            new_data = self._differ.apply(current, record.patch_data)
        except DeltaDecodeError as exc:
            raise PatchMismatch(key, str(exc)) from exc
        computed = delta_check_hash(new_data)
        if not _same_hash(computed, record.result_hash):
            raise PatchMismatch(key, f"patched tile hashes to {computed}, expected {record.result_hash}")
        store.put_tile(key, new_data)
        counters.written += 1
        counters.delta_encoded += 1
