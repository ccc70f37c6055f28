"""Fault kinds surfaced by tile synchronization operations."""

from __future__ import annotations

from typing import Optional

from tilesync.core.schemas import OperationStatus
from tilesync.core.tile_id import TileKey


class TileSyncError(Exception):
    """Base class for every fault the engine reports to its caller."""

    status: OperationStatus = OperationStatus.IO_FAULT

    @property
    def kind(self) -> str:
        return type(self).__name__


class SchemaError(TileSyncError):
    """Container layout is not one of the recognized tile layouts."""

    status = OperationStatus.SCHEMA_UNSUPPORTED


class IOFault(TileSyncError):
    """Underlying container is unreachable, unreadable or corrupt."""

    status = OperationStatus.IO_FAULT


class MetadataConflict(TileSyncError):
    status = OperationStatus.CONFLICT

    def __init__(self, name: str, existing: str, incoming: str):
        super().__init__(
            f"metadata key '{name}' already holds '{existing}', refusing to add '{incoming}'"
        )
        self.name = name
        self.existing = existing
        self.incoming = incoming


class TileConflict(TileSyncError):
    status = OperationStatus.CONFLICT

    def __init__(self, key: TileKey):
        super().__init__(f"destination already holds a different tile at {key}")
        self.key = key


class IntegrityFault(TileSyncError):
    """A content hash did not match the value it was checked against."""

    status = OperationStatus.INTEGRITY_FAULT


class BaseMismatch(IntegrityFault):
    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"base store aggregate hash {actual} does not match the patch base {expected}"
        )
        self.expected = expected
        self.actual = actual


class PatchMismatch(IntegrityFault):
    def __init__(self, key: TileKey, reason: str):
        super().__init__(f"patch for tile {key} failed verification: {reason}")
        self.key = key
        self.reason = reason


class ResultMismatch(IntegrityFault):
    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"patched store aggregate hash {actual} does not match the expected {expected}"
        )
        self.expected = expected
        self.actual = actual


class AggHashMismatch(IntegrityFault):
    def __init__(self, stored: str, computed: str):
        super().__init__(f"stored agg_tiles_hash {stored} does not match computed {computed}")
        self.stored = stored
        self.computed = computed


class CorruptTile(IntegrityFault):
    def __init__(self, key: TileKey, stored_hash: Optional[str], computed_hash: Optional[str]):
        super().__init__(
            f"tile {key} has stored hash {stored_hash} but its data hashes to {computed_hash}"
        )
        self.key = key
        self.stored_hash = stored_hash
        self.computed_hash = computed_hash
