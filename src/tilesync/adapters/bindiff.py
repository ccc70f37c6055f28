from __future__ import annotations

from dataclasses import dataclass

import bsdiff4

from tilesync.core.interfaces import BinaryDiffer


class DeltaDecodeError(ValueError):
    """A binary delta could not be applied to its base payload."""


@dataclass(frozen=True)
class BsdiffDiffer(BinaryDiffer):
    """bsdiff4-backed delta primitive (BSDIFF40 format, bz2 compressed)."""

    def diff(self, old: bytes, new: bytes) -> bytes:
        return bsdiff4.diff(old, new)

    def apply(self, old: bytes, patch: bytes) -> bytes:
        try:
            return bsdiff4.patch(old, patch)
        except (ValueError, OSError, EOFError, MemoryError, OverflowError) as exc:
            raise DeltaDecodeError(f"corrupt delta: {exc}") from exc


def build_differ() -> BinaryDiffer:
    return BsdiffDiffer()
