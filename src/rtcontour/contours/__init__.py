"""Tracing, smoothing and filling of per-slice contours."""

from rtcontour.contours.filler import fill_polygon, fill_polygon_and_count, fill_polygons
from rtcontour.contours.smoother import smooth_polygon
from rtcontour.contours.tracer import trace_polygons
from rtcontour.contours.transform import VolumeTransform
from rtcontour.contours.types import ContourPolygon, ContoursPerSlice, PolygonPoints, SmoothingLevel, VoxelCounts

__all__ = [
    "ContourPolygon",
    "ContoursPerSlice",
    "PolygonPoints",
    "SmoothingLevel",
    "VolumeTransform",
    "VoxelCounts",
    "fill_polygon",
    "fill_polygon_and_count",
    "fill_polygons",
    "smooth_polygon",
    "trace_polygons",
]
