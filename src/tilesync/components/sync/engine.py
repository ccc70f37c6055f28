"""Copy / diff / apply-patch orchestration over tile container files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from tqdm import tqdm

from tilesync.adapters.bindiff import build_differ
from tilesync.adapters.sqlite_container import open_container
from tilesync.components.mbtiles.metadata import MergePolicy, MetadataMerger, diff_metadata, user_metadata
from tilesync.components.mbtiles.store import LogicalTileStore
from tilesync.components.mbtiles.validation import AggHashMode, IntegrityCheck, validate
from tilesync.components.sync.diff import DiffEngine
from tilesync.components.sync.options import CopyOptions, OnDuplicate
from tilesync.components.sync.patch import PatchApplier
from tilesync.components.sync.patch_file import PatchContainer
from tilesync.components.sync.settings import TileSyncSettings
from tilesync.core.errors import IOFault, TileConflict, TileSyncError
from tilesync.core.hashing import aggregate_hash, tile_hash
from tilesync.core.interfaces import BinaryDiffer
from tilesync.core.schemas import (
    AGG_TILES_HASH,
    MetadataAction,
    MetadataChange,
    OperationResult,
    PatchType,
)

logger = logging.getLogger(__name__)

_DUPLICATE_METADATA_POLICY = {
    OnDuplicate.OVERRIDE: MergePolicy.OVERWRITE,
    OnDuplicate.ABORT: MergePolicy.STRICT,
}


def _discard(path: Optional[Path]) -> None:
    if path is not None and path.exists():
        logger.info("Removing incomplete output %s", path)
        path.unlink()


def _same_file(a: Path, b: Path) -> bool:
    return a.exists() and b.exists() and a.resolve() == b.resolve()


class CopyEngine:
    """Runs copy, diff and apply-patch, each inside one transaction.

    Every public operation returns an OperationResult. TileSyncErrors are
    captured in the result after the transaction has been rolled back and
    any output file created by the failed operation has been removed.
    Other exceptions, including KeyboardInterrupt, propagate after the same
    cleanup.
    """

    def __init__(
        self,
        settings: Optional[TileSyncSettings] = None,
        differ: Optional[BinaryDiffer] = None,
    ):
        self.settings = settings or TileSyncSettings()
        self._differ = differ or build_differ()

    def _progress(self, iterable, desc: str, total: Optional[int] = None):
        return tqdm(iterable, desc=desc, total=total, unit="tile", disable=not self.settings.progress)

    def _run(
        self,
        operation: str,
        body: Callable[[OperationResult], None],
        created: Optional[Path] = None,
    ) -> OperationResult:
        result = OperationResult(operation=operation)
        try:
            body(result)
        except TileSyncError as exc:
            fault = exc
        except OSError as exc:
            fault = IOFault(str(exc))
            fault.__cause__ = exc
        except BaseException:
            _discard(created)
            raise
        else:
            logger.info("%s finished: %s", operation, result.tiles.model_dump())
            return result

        logger.error("%s failed (%s): %s", operation, fault.kind, fault)
        _discard(created)
        return result.model_copy(
            update={
                "status": fault.status,
                "fault_kind": fault.kind,
                "message": str(fault),
                "fault": fault,
            }
        )

    # ------------------------------------------------------------------
    # copy
    # ------------------------------------------------------------------

    def copy(
        self,
        source: Path,
        destination: Path,
        options: Optional[CopyOptions] = None,
    ) -> OperationResult:
        """Logical copy of ``source`` into ``destination`` (created if missing)."""
        source, destination = Path(source), Path(destination)
        options = options or CopyOptions(on_duplicate=self.settings.on_duplicate, dst_type=self.settings.dst_type)
        created = None if destination.exists() else destination
        logger.info("Copying %s -> %s (%s)", source, destination, options.copy_type.value)
        return self._run("copy", lambda result: self._copy(result, source, destination, options), created)

    def _copy(self, result: OperationResult, source: Path, destination: Path, options: CopyOptions) -> None:
        if _same_file(source, destination):
            raise IOFault(f"source and destination are the same file: {source}")
        batch = self.settings.fetch_batch_size
        with open_container(source, readonly=True) as src_c, open_container(destination, create=True) as dst_c:
            src = LogicalTileStore.open(src_c, batch)
            with dst_c.transaction():
                if dst_c.is_empty():
                    dst = LogicalTileStore.create(dst_c, options.dst_type or src.mbt_type, batch)
                else:
                    dst = LogicalTileStore.open(dst_c, batch)
                    if options.dst_type is not None and options.dst_type is not dst.mbt_type:
                        logger.warning(
                            "Destination already exists as %s, ignoring requested layout %s",
                            dst.mbt_type.value,
                            options.dst_type.value,
                        )

                if options.copy_type.copy_metadata:
                    result.metadata_changes = self._copy_metadata(src, dst, options.on_duplicate)

                if options.copy_type.copy_tiles:
                    self._copy_tiles(result, src, dst, options)
                    dst.finalize()
                    result.agg_tiles_hash = aggregate_hash(dst)
                    dst.put_metadata(AGG_TILES_HASH, result.agg_tiles_hash)

    def _copy_metadata(self, src: LogicalTileStore, dst: LogicalTileStore, on_duplicate: OnDuplicate) -> int:
        existing = dst.get_metadata()
        changes = [
            MetadataChange(name, MetadataAction.ADD, value)
            for name, value in sorted(user_metadata(src.get_metadata()).items())
            if not (on_duplicate is OnDuplicate.IGNORE and name in existing)
        ]
        policy = _DUPLICATE_METADATA_POLICY.get(on_duplicate, MergePolicy.STRICT)
        return MetadataMerger(policy).apply(dst, changes)

    def _copy_tiles(
        self,
        result: OperationResult,
        src: LogicalTileStore,
        dst: LogicalTileStore,
        options: CopyOptions,
    ) -> None:
        check_existing = not dst.is_empty()
        entries = src.iterate_tiles(options.tile_filter)
        for entry in self._progress(entries, desc="copy"):
            result.tiles.read += 1
            if check_existing:
                existing = dst.get_entry(entry.key)
                if existing is not None and options.on_duplicate is not OnDuplicate.OVERRIDE:
                    if options.on_duplicate is OnDuplicate.ABORT and tile_hash(existing.data) != tile_hash(entry.data):
                        raise TileConflict(entry.key)
                    result.tiles.skipped += 1
                    continue
            dst.put_tile(entry.key, entry.data)
            result.tiles.written += 1

    # ------------------------------------------------------------------
    # diff
    # ------------------------------------------------------------------

    def diff(
        self,
        base: Path,
        target: Path,
        patch: Path,
        patch_type: Optional[PatchType] = None,
    ) -> OperationResult:
        """Write the DeltaSet turning ``base`` into ``target`` to a new ``patch`` file."""
        base, target, patch = Path(base), Path(target), Path(patch)
        patch_type = patch_type or self.settings.patch_type
        created = None if patch.exists() else patch
        logger.info("Diffing %s -> %s into %s (%s)", base, target, patch, patch_type.value)
        return self._run("diff", lambda result: self._diff(result, base, target, patch, patch_type), created)

    def _diff(self, result: OperationResult, base: Path, target: Path, patch: Path, patch_type: PatchType) -> None:
        if patch.exists():
            raise IOFault(f"patch file already exists: {patch}")
        batch = self.settings.fetch_batch_size
        with open_container(base, readonly=True) as base_c, open_container(target, readonly=True) as target_c:
            base_store = LogicalTileStore.open(base_c, batch)
            target_store = LogicalTileStore.open(target_c, batch)
            before = aggregate_hash(base_store)
            after = aggregate_hash(target_store)
            changes = diff_metadata(base_store.get_metadata(), target_store.get_metadata())

            with open_container(patch, create=True) as patch_c, patch_c.transaction():
                patch_file = PatchContainer.create(patch_c, batch)
                result.metadata_changes = patch_file.write_header(before, after, patch_type, changes)
                engine = DiffEngine(self._differ, patch_type)
                records = engine.iter_records(base_store, target_store)
                result.tiles = patch_file.write_records(self._progress(records, desc="diff"))
        result.agg_tiles_hash = after
        result.details = {"before": before, "after": after, "patch_type": patch_type.value}

    # ------------------------------------------------------------------
    # apply-patch
    # ------------------------------------------------------------------

    def apply_patch(
        self,
        base: Path,
        patch: Path,
        destination: Optional[Path] = None,
        metadata_policy: Optional[MergePolicy] = None,
    ) -> OperationResult:
        """Apply ``patch`` to ``base`` in place, or to a copy written to ``destination``."""
        base, patch = Path(base), Path(patch)
        destination = Path(destination) if destination is not None else None
        policy = metadata_policy or self.settings.metadata_policy
        created = destination if destination is not None and not destination.exists() else None
        logger.info("Applying %s to %s%s", patch, base, f" into {destination}" if destination else "")
        return self._run(
            "apply-patch",
            lambda result: self._apply_patch(result, base, patch, destination, policy),
            created,
        )

    def _apply_patch(
        self,
        result: OperationResult,
        base: Path,
        patch: Path,
        destination: Optional[Path],
        policy: MergePolicy,
    ) -> None:
        batch = self.settings.fetch_batch_size
        applier = PatchApplier(self._differ, policy)
        with open_container(patch, readonly=True) as patch_c:
            patch_file = PatchContainer.open(patch_c, batch)
            delta = patch_file.load()
            delta.records = self._progress(delta.records, desc="apply", total=patch_file.count_records())
            result.metadata_changes = len(delta.metadata_changes)

            if destination is None:
                with open_container(base) as base_c:
                    store = LogicalTileStore.open(base_c, batch)
                    with base_c.transaction():
                        result.tiles = applier.apply(store, delta)
            else:
                if destination.exists():
                    raise IOFault(f"destination already exists: {destination}")
                if _same_file(base, patch):
                    raise IOFault(f"base and patch are the same file: {base}")
                with open_container(base, readonly=True) as base_c, open_container(destination, create=True) as dst_c:
                    src = LogicalTileStore.open(base_c, batch)
                    with dst_c.transaction():
                        dst = LogicalTileStore.create(dst_c, src.mbt_type, batch)
                        for name, value in src.get_metadata().items():
                            dst.put_metadata(name, value)
                        for entry in self._progress(src.iterate_tiles(), desc="copy base"):
                            dst.put_tile(entry.key, entry.data)
                        result.tiles = applier.apply(dst, delta)
        result.agg_tiles_hash = delta.after

    # ------------------------------------------------------------------
    # validate
    # ------------------------------------------------------------------

    def validate(
        self,
        path: Path,
        integrity: Optional[IntegrityCheck] = None,
        agg_hash: AggHashMode = AggHashMode.VERIFY,
    ) -> OperationResult:
        path = Path(path)
        integrity = integrity or self.settings.integrity_check
        logger.info("Validating %s (integrity=%s, agg_hash=%s)", path, integrity.value, agg_hash.value)
        return self._run("validate", lambda result: self._validate(result, path, integrity, agg_hash))

    def _validate(self, result: OperationResult, path: Path, integrity: IntegrityCheck, agg_hash: AggHashMode) -> None:
        readonly = agg_hash is not AggHashMode.UPDATE
        with open_container(path, readonly=readonly) as container:
            store = LogicalTileStore.open(container, self.settings.fetch_batch_size)
            if readonly:
                report = validate(store, integrity, agg_hash)
            else:
                with container.transaction():
                    report = validate(store, integrity, agg_hash)
        result.tiles.read = report.tiles_checked
        result.agg_tiles_hash = report.computed_agg_tiles_hash
        result.details = report.model_dump()
