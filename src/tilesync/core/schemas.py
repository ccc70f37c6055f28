from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tilesync.core.tile_id import TileKey

# Aggregate-hash checkpoints; owned by the hash and patch machinery, never merged.
AGG_TILES_HASH = "agg_tiles_hash"
AGG_TILES_HASH_BEFORE_APPLY = "agg_tiles_hash_before_apply"
AGG_TILES_HASH_AFTER_APPLY = "agg_tiles_hash_after_apply"
RESERVED_METADATA_KEYS = frozenset(
    {AGG_TILES_HASH, AGG_TILES_HASH_BEFORE_APPLY, AGG_TILES_HASH_AFTER_APPLY}
)
PATCH_TYPE_KEY = "patch_type"


class OperationStatus(str, Enum):
    SUCCESS = "success"
    IO_FAULT = "io_fault"
    SCHEMA_UNSUPPORTED = "schema_unsupported"
    INTEGRITY_FAULT = "integrity_fault"
    CONFLICT = "conflict"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    OperationStatus.SUCCESS: 0,
    OperationStatus.IO_FAULT: 1,
    OperationStatus.SCHEMA_UNSUPPORTED: 2,
    OperationStatus.INTEGRITY_FAULT: 3,
    OperationStatus.CONFLICT: 4,
}


class PatchType(str, Enum):
    """How changed tiles are encoded in a patch."""

    WHOLE = "whole"
    BIN_DIFF_RAW = "bin-diff-raw"


class PatchAction(str, Enum):
    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


class PatchEncoding(str, Enum):
    FULL = "full"
    DELTA = "delta"
    NONE = "none"


class MetadataAction(str, Enum):
    ADD = "add"
    EDIT = "edit"
    REMOVE = "remove"


@dataclass(frozen=True)
class MetadataChange:
    name: str
    action: MetadataAction
    value: Optional[str] = None

    def __post_init__(self) -> None:
        if self.action is MetadataAction.REMOVE and self.value is not None:
            raise ValueError(f"remove change for '{self.name}' must not carry a value")
        if self.action is not MetadataAction.REMOVE and self.value is None:
            raise ValueError(f"{self.action.value} change for '{self.name}' requires a value")


@dataclass(frozen=True)
class PatchRecord:
    """One tile-level change between a base and a target store.

    ``result_hash`` is the expected digest of the tile after the record is
    applied: the MD5 tile hash for full payloads, the xxh3-64 check digest
    for deltas, and ``None`` for removals or explicit null tiles.
    """

    key: TileKey
    action: PatchAction
    encoding: PatchEncoding
    tile_data: Optional[bytes] = None
    patch_data: Optional[bytes] = None
    result_hash: Optional[str] = None

    @classmethod
    def removed(cls, key: TileKey) -> "PatchRecord":
        return cls(key=key, action=PatchAction.REMOVE, encoding=PatchEncoding.NONE)

    def __post_init__(self) -> None:
        if self.action is PatchAction.REMOVE:
            if self.encoding is not PatchEncoding.NONE:
                raise ValueError(f"remove record for {self.key} cannot carry an encoding")
        elif self.encoding is PatchEncoding.DELTA:
            if self.action is not PatchAction.CHANGE or self.patch_data is None:
                raise ValueError(f"delta record for {self.key} must be a change with patch_data")
        elif self.encoding is not PatchEncoding.FULL:
            raise ValueError(f"{self.action.value} record for {self.key} needs a full or delta encoding")


@dataclass
class DeltaSet:
    """Full diff artifact; ``records`` may be a lazy, single-pass iterable."""

    before: str
    after: str
    patch_type: PatchType = PatchType.BIN_DIFF_RAW
    metadata_changes: List[MetadataChange] = field(default_factory=list)
    records: Iterable[PatchRecord] = field(default_factory=list)


class TileCounters(BaseModel):
    read: int = 0
    written: int = 0
    skipped: int = 0
    removed: int = 0
    delta_encoded: int = 0


class OperationResult(BaseModel):
    """Summary of one copy / diff / apply-patch invocation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    operation: str
    status: OperationStatus = OperationStatus.SUCCESS
    fault_kind: Optional[str] = None
    message: Optional[str] = None
    agg_tiles_hash: Optional[str] = Field(default=None, description="Aggregate hash of the written store")
    tiles: TileCounters = Field(default_factory=TileCounters)
    metadata_changes: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)
    fault: Optional[Exception] = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    def raise_for_status(self) -> "OperationResult":
        if self.fault is not None:
            raise self.fault
        return self
