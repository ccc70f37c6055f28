"""Tile synchronization - copy, diff and patch between MBTiles containers."""

from tilesync.components.sync.diff import DiffEngine
from tilesync.components.sync.engine import CopyEngine
from tilesync.components.sync.options import CopyOptions, CopyType, OnDuplicate
from tilesync.components.sync.patch import PatchApplier
from tilesync.components.sync.patch_file import PatchContainer
from tilesync.components.sync.settings import TileSyncSettings

__all__ = [
    "DiffEngine",
    "CopyEngine",
    "CopyOptions",
    "CopyType",
    "OnDuplicate",
    "PatchApplier",
    "PatchContainer",
    "TileSyncSettings",
]
