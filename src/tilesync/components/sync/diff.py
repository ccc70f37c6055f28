"""Tile-level diff between a base and a target store."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from tilesync.adapters.bindiff import build_differ
from tilesync.components.mbtiles.metadata import diff_metadata
from tilesync.core.errors import IOFault
from tilesync.core.hashing import aggregate_hash, delta_check_hash, tile_hash
from tilesync.core.interfaces import BinaryDiffer, TileSource
from tilesync.core.schemas import DeltaSet, PatchAction, PatchEncoding, PatchRecord, PatchType
from tilesync.core.tile_id import TileEntry

logger = logging.getLogger(__name__)


def ascending(entries: Iterable[TileEntry], label: str) -> Iterator[TileEntry]:
    """Pass entries through, failing if keys are not strictly ascending."""
    previous = None
    for entry in entries:
        if previous is not None and not previous < entry.key:
            raise IOFault(f"{label} tiles are not in ascending key order at {entry.key} (after {previous})")
        previous = entry.key
        yield entry


class DiffEngine:
    """Produces PatchRecords by merge-walking two key-ordered tile streams.

    Tiles present in both stores are compared by content hash. For changed
    tiles with ``PatchType.BIN_DIFF_RAW`` a binary delta is attempted and
    kept only if it is smaller than the new payload.
    """

    def __init__(
        self,
        differ: Optional[BinaryDiffer] = None,
        patch_type: PatchType = PatchType.BIN_DIFF_RAW,
    ):
        self._differ = differ or build_differ()
        self.patch_type = patch_type

    def iter_records(self, base: TileSource, target: TileSource) -> Iterator[PatchRecord]:
        base_it = ascending(base.iterate_tiles(), "base")
        target_it = ascending(target.iterate_tiles(), "target")
        old = next(base_it, None)
        new = next(target_it, None)

        while old is not None or new is not None:
            if new is None or (old is not None and old.key < new.key):
                yield PatchRecord.removed(old.key)
                old = next(base_it, None)
            elif old is None or new.key < old.key:
                yield self._full(PatchAction.ADD, new)
                new = next(target_it, None)
            else:
                if tile_hash(old.data) != tile_hash(new.data):
                    yield self._changed(old, new)
                old = next(base_it, None)
                new = next(target_it, None)

    def _full(self, action: PatchAction, new: TileEntry) -> PatchRecord:
        return PatchRecord(
            key=new.key,
            action=action,
            encoding=PatchEncoding.FULL,
            tile_data=new.data,
            result_hash=tile_hash(new.data),
        )

    def _changed(self, old: TileEntry, new: TileEntry) -> PatchRecord:
        if self.patch_type is PatchType.BIN_DIFF_RAW and old.data is not None and new.data is not None:
            patch = self._differ.diff(old.data, new.data)
            if len(patch) < len(new.data):
                return PatchRecord(
                    key=new.key,
                    action=PatchAction.CHANGE,
                    encoding=PatchEncoding.DELTA,
                    patch_data=patch,
                    result_hash=delta_check_hash(new.data),
                )
            logger.debug("Delta for %s is not smaller than the tile (%d >= %d)", new.key, len(patch), len(new.data))
        return self._full(PatchAction.CHANGE, new)

    def diff(self, base: TileSource, target: TileSource) -> DeltaSet:
        """Compute a fully materialized DeltaSet, including both checkpoints."""
        before = aggregate_hash(base)
        after = aggregate_hash(target)
        records = list(self.iter_records(base, target))
        changes = diff_metadata(base.get_metadata(), target.get_metadata())
        logger.info(
            "Diff produced %d tile records and %d metadata changes (before=%s, after=%s)",
            len(records),
            len(changes),
            before,
            after,
        )
        return DeltaSet(
            before=before,
            after=after,
            patch_type=self.patch_type,
            metadata_changes=changes,
            records=records,
        )
