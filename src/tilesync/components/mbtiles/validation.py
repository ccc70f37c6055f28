"""Container validation: SQLite integrity, per-tile hashes, aggregate hash."""

from __future__ import annotations

import logging
from enum import Enum

from tilesync.components.mbtiles.models import ValidationReport
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.core.errors import AggHashMismatch, CorruptTile, IOFault
from tilesync.core.hashing import fold_entries, tile_hash
from tilesync.core.schemas import AGG_TILES_HASH

logger = logging.getLogger(__name__)


class IntegrityCheck(str, Enum):
    OFF = "off"
    QUICK = "quick"
    FULL = "full"


class AggHashMode(str, Enum):
    OFF = "off"
    VERIFY = "verify"
    UPDATE = "update"


_PRAGMAS = {
    IntegrityCheck.QUICK: "PRAGMA quick_check",
    IntegrityCheck.FULL: "PRAGMA integrity_check",
}


def check_integrity(store: LogicalTileStore, mode: IntegrityCheck) -> None:
    if mode is IntegrityCheck.OFF:
        return
    rows = store.container.fetch_all(_PRAGMAS[mode])
    messages = [str(row[0]) for row in rows]
    if messages != ["ok"]:
        raise IOFault(f"{store.container.path}: {mode.value} check failed: {'; '.join(messages[:5])}")


def _checked_entries(store: LogicalTileStore, report: ValidationReport):
    """Yield entries while comparing each stored hash to the recomputed one."""
    verify = store.descriptor.has_stored_hash
    for entry, stored in store.iterate_with_stored_hash():
        report.tiles_checked += 1
        if verify:
            computed = tile_hash(entry.data)
            stored_norm = str(stored).upper() if stored is not None else None
            if stored_norm != computed:
                raise CorruptTile(entry.key, stored, computed)
        yield entry


def validate(
    store: LogicalTileStore,
    integrity: IntegrityCheck = IntegrityCheck.QUICK,
    agg_hash: AggHashMode = AggHashMode.VERIFY,
) -> ValidationReport:
    """Validate a container; raises the first fault found.

    ``AggHashMode.UPDATE`` writes the computed hash, so the caller should
    hold a transaction on the store's container.
    """
    check_integrity(store, integrity)
    report = ValidationReport(
        path=str(store.container.path),
        layout=str(store.descriptor),
        integrity_check=integrity.value,
        stored_agg_tiles_hash=store.get_metadata_value(AGG_TILES_HASH),
    )
    computed = fold_entries(_checked_entries(store, report))
    report.computed_agg_tiles_hash = computed

    if agg_hash is AggHashMode.VERIFY:
        if report.stored_agg_tiles_hash is None:
            logger.warning("%s has no %s to verify against", store.container.path, AGG_TILES_HASH)
        elif report.stored_agg_tiles_hash.upper() != computed:
            raise AggHashMismatch(report.stored_agg_tiles_hash, computed)
    elif agg_hash is AggHashMode.UPDATE and report.stored_agg_tiles_hash != computed:
        store.put_metadata(AGG_TILES_HASH, computed)
        report.agg_hash_updated = True
        logger.info("Updated %s of %s to %s", AGG_TILES_HASH, store.container.path, computed)

    logger.info("Validated %d tiles in %s", report.tiles_checked, store.container.path)
    return report
