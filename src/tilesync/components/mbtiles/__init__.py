"""MBTiles containers - layout detection, logical tile access, validation."""

from tilesync.components.mbtiles.inspector import SchemaInspector, detect_type
from tilesync.components.mbtiles.layouts import MbtType, SchemaDescriptor, create_layout
from tilesync.components.mbtiles.metadata import MergePolicy, MetadataMerger, diff_metadata
from tilesync.components.mbtiles.models import TilesetSummary, ValidationReport, ZoomSummary
from tilesync.components.mbtiles.store import ContentIndex, LogicalTileStore
from tilesync.components.mbtiles.validation import AggHashMode, IntegrityCheck, validate

__all__ = [
    "SchemaInspector",
    "detect_type",
    "MbtType",
    "SchemaDescriptor",
    "create_layout",
    "MergePolicy",
    "MetadataMerger",
    "diff_metadata",
    "TilesetSummary",
    "ValidationReport",
    "ZoomSummary",
    "ContentIndex",
    "LogicalTileStore",
    "AggHashMode",
    "IntegrityCheck",
    "validate",
]
