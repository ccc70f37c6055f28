"""Pydantic models reported by tileset inspection and validation."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ZoomSummary(BaseModel):
    zoom_level: int
    tile_count: int
    null_tiles: int = Field(0, description="Rows whose payload is an explicit null tile")
    total_bytes: int
    min_column: int
    max_column: int
    min_row: int
    max_row: int


class TilesetSummary(BaseModel):
    path: str
    layout: str
    tile_count: int
    total_bytes: int
    min_zoom: Optional[int] = None
    max_zoom: Optional[int] = None
    zooms: List[ZoomSummary] = Field(default_factory=list)
    agg_tiles_hash: Optional[str] = Field(None, description="Stored aggregate hash, if any")


class ValidationReport(BaseModel):
    path: str
    layout: str
    integrity_check: str
    tiles_checked: int = 0
    stored_agg_tiles_hash: Optional[str] = None
    computed_agg_tiles_hash: Optional[str] = None
    agg_hash_updated: bool = False
