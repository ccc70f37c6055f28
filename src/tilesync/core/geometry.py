from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import mercantile
from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from tilesync.core.tile_id import TileKey, invert_y


def polygon_from_wkt(wkt_str: str) -> BaseGeometry:
    try:
        geom = wkt.loads(wkt_str)
    except ShapelyError as exc:
        raise ValueError(f"Invalid WKT geometry: {exc}") from exc
    if geom.is_empty:
        raise ValueError("WKT geometry is empty")
    if geom.geom_type not in {"Polygon", "MultiPolygon"}:
        raise ValueError(f"Expected Polygon or MultiPolygon WKT, got {geom.geom_type}")
    return geom


@dataclass(frozen=True)
class BBox:
    """Geographic bounding box in degrees (west, south, east, north)."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if self.west >= self.east or self.south >= self.north:
            raise ValueError(f"Degenerate bounding box: {self.as_tuple()}")

    @classmethod
    def parse(cls, value: str) -> "BBox":
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected 'west,south,east,north', got {value!r}")
        west, south, east, north = (float(p) for p in parts)
        return cls(west, south, east, north)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    def intersects(self, other: mercantile.LngLatBbox) -> bool:
        return (
            other.west < self.east
            and other.east > self.west
            and other.south < self.north
            and other.north > self.south
        )


def tile_bounds(key: TileKey) -> mercantile.LngLatBbox:
    """Geographic bounds of a stored (TMS row) tile."""
    xyz_y = invert_y(key.zoom_level, key.tile_row)
    return mercantile.bounds(key.tile_column, xyz_y, key.zoom_level)


@dataclass(frozen=True)
class TileFilter:
    """Restricts a tile iteration to a zoom range and/or a geographic area."""

    min_zoom: Optional[int] = None
    max_zoom: Optional[int] = None
    bbox: Optional[BBox] = None
    region: Optional[BaseGeometry] = None

    def __post_init__(self) -> None:
        if self.min_zoom is not None and self.max_zoom is not None and self.min_zoom > self.max_zoom:
            raise ValueError(f"min_zoom {self.min_zoom} is greater than max_zoom {self.max_zoom}")

    @classmethod
    def from_wkt(cls, region_wkt: str, **kwargs) -> "TileFilter":
        return cls(region=polygon_from_wkt(region_wkt), **kwargs)

    @property
    def is_spatial(self) -> bool:
        return self.bbox is not None or self.region is not None

    def accepts_zoom(self, zoom_level: int) -> bool:
        if self.min_zoom is not None and zoom_level < self.min_zoom:
            return False
        if self.max_zoom is not None and zoom_level > self.max_zoom:
            return False
        return True

    def accepts(self, key: TileKey) -> bool:
        if not self.accepts_zoom(key.zoom_level):
            return False
        if not self.is_spatial:
            return True
        if key.tile_column >= (1 << key.zoom_level) or key.tile_row >= (1 << key.zoom_level):
            return False
        bounds = tile_bounds(key)
        if self.bbox is not None and not self.bbox.intersects(bounds):
            return False
        if self.region is not None and not self.region.intersects(box(*bounds)):
            return False
        return True
