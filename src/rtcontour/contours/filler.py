"""Scanline rasterisation of polygons onto 2D label grids.

Rows are sampled at pixel centres. Every row is intersected with the polygon
twice, slightly above and slightly below the centre line, and the two sets of
crossings are merged so that edges running exactly through pixel centres are
filled inclusively. The result is independent of the winding direction.
"""

from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np

from rtcontour.contours.types import ContourPolygon, PolygonPoints, VoxelCounts
from rtcontour.errors import InvalidInput

EPSILON = 0.01

PolygonLike = Union[np.ndarray, ContourPolygon, PolygonPoints, List[Tuple[float, float]]]


class _State(Enum):
    BACKGROUND = 0
    BOTTOM = 1
    TOP = 2
    INSIDE = 3


def _as_points(polygon: PolygonLike) -> np.ndarray:
    if polygon is None:
        raise InvalidInput("The polygon is None")
    if isinstance(polygon, (ContourPolygon, PolygonPoints)):
        polygon = polygon.points
    points = np.asarray(polygon)
    if points.ndim != 2 or points.shape[1] != 2:
        raise InvalidInput(f"Polygon points must have shape (N, 2), got {points.shape}")
    if len(points) == 0:
        raise InvalidInput("The polygon does not contain any points.")
    return points


def _check_grid(grid: np.ndarray) -> None:
    if grid is None:
        raise InvalidInput("The grid is None")
    if grid.ndim != 2:
        raise InvalidInput(f"Expected a 2D grid, got {grid.ndim} dimensions")


def _row_crossings(
    x: np.ndarray, y: np.ndarray, x_prev: np.ndarray, y_prev: np.ndarray, row: float
) -> List[float]:
    """Merged crossing positions of all polygon edges with one pixel row."""
    sloped = y != y_prev
    nodes_x, nodes_key, nodes_plus = [], [], []

    for threshold, is_plus in ((row + EPSILON, True), (row - EPSILON, False)):
        crosses = sloped & (((y < threshold) & (y_prev >= threshold)) | ((y_prev < threshold) & (y >= threshold)))
        edges = np.flatnonzero(crosses)
        if edges.size == 0:
            continue
        xi, yi = x[edges], y[edges]
        at_row = xi + (row - yi) / (y_prev[edges] - yi) * (x_prev[edges] - xi)
        nodes_x.append(at_row)
        # keeps the per-edge order (plus before minus) among equal x values
        nodes_key.append(2 * edges + (0 if is_plus else 1))
        nodes_plus.append(np.full(edges.size, is_plus))

    if not nodes_x:
        return []

    node_x = np.concatenate(nodes_x)
    node_plus = np.concatenate(nodes_plus)
    order = np.lexsort((np.concatenate(nodes_key), node_x))

    merged = []
    state = _State.BACKGROUND
    for position, is_plus in zip(node_x[order].tolist(), node_plus[order].tolist()):
        if state is _State.BACKGROUND:
            merged.append(position)
            state = _State.TOP if is_plus else _State.BOTTOM
        elif state is _State.BOTTOM:
            if is_plus:
                state = _State.INSIDE
            else:
                merged.append(position)
                state = _State.BACKGROUND
        elif state is _State.TOP:
            if is_plus:
                merged.append(position)
                state = _State.BACKGROUND
            else:
                state = _State.INSIDE
        else:
            state = _State.BOTTOM if is_plus else _State.TOP
    return merged


def scanline_spans(points: PolygonLike, height: int, width: int) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(row, first_column, last_column)`` for every inclusive run of pixels inside the polygon.

    :param PolygonLike points: Polygon vertices as (x, y) rows.
    :param int height: Number of grid rows.
    :param int width: Number of grid columns.
    """
    points = _as_points(points).astype(np.float64)
    x, y = points[:, 0], points[:, 1]
    x_prev, y_prev = np.roll(x, 1), np.roll(y, 1)

    first_row = max(0, int(np.ceil(y.min() - EPSILON)))
    last_row = min(height - 1, int(np.floor(y.max() + EPSILON)))

    for row in range(first_row, last_row + 1):
        crossings = _row_crossings(x, y, x_prev, y_prev, float(row))
        for first, second in zip(crossings[0::2], crossings[1::2]):
            start = max(0, int(np.ceil(first - EPSILON)))
            if start >= width:
                break
            end = int(np.floor(second + EPSILON))
            if end < 0:
                continue
            end = min(end, width - 1)
            if start <= end:
                yield row, start, end


def _vertex_pixels(points: np.ndarray, height: int, width: int) -> Iterator[Tuple[int, int]]:
    for px, py in points.tolist():
        if 0 <= px < width and 0 <= py < height:
            yield int(py), int(px)


def _is_raw(points: np.ndarray) -> bool:
    return np.issubdtype(points.dtype, np.integer)


def fill_polygon(
    polygon: PolygonLike, grid: np.ndarray, value: int, include_vertices: Optional[bool] = None
) -> int:
    """Rasterise one polygon into ``grid`` in place.

    :param PolygonLike polygon: Polygon vertices as (x, y) rows.
    :param np.ndarray grid: 2D grid indexed [y, x].
    :param int value: Value written to every pixel inside the polygon.
    :param Optional[bool] include_vertices: Also set the pixels under the vertices.
        Defaults to True for integer (raw traced) polygons, False otherwise.
    :raises InvalidInput: For empty polygons or grids that are not 2D.
    :return int: The number of pixels whose value changed to ``value``.
    """
    _check_grid(grid)
    points = _as_points(polygon)
    height, width = grid.shape
    if include_vertices is None:
        include_vertices = _is_raw(points)

    written = 0
    if include_vertices:
        for row, column in _vertex_pixels(points, height, width):
            if grid[row, column] != value:
                grid[row, column] = value
                written += 1

    for row, start, end in scanline_spans(points, height, width):
        span = grid[row, start : end + 1]
        written += int(np.count_nonzero(span != value))
        span[...] = value
    return written


def fill_polygons(polygons: Iterable[PolygonLike], grid: np.ndarray, value: int) -> int:
    """Rasterise several polygons into ``grid``; returns the number of pixels changed."""
    return sum(fill_polygon(polygon, grid, value) for polygon in polygons)


def fill_polygon_and_count(
    polygon: PolygonLike, markers: np.ndarray, marker: int, labels: np.ndarray, foreground_id: int
) -> VoxelCounts:
    """Write ``marker`` over a raw polygon and its interior, counting what was newly covered.

    :param PolygonLike polygon: Raw traced polygon (integer pixel centres).
    :param np.ndarray markers: 2D marker grid, modified in place.
    :param int marker: The marker of this region.
    :param np.ndarray labels: The label slice the polygon was traced from.
    :param int foreground_id: Label counted as foreground.
    :raises InvalidInput: If the grids disagree in shape.
    :return VoxelCounts: Newly marked pixels split into foreground and other.
    """
    _check_grid(markers)
    if labels.shape != markers.shape:
        raise InvalidInput(f"Marker grid {markers.shape} and label grid {labels.shape} differ in shape")
    points = _as_points(polygon)
    height, width = markers.shape

    foreground = other = 0
    for row, column in _vertex_pixels(points, height, width):
        if markers[row, column] != marker:
            markers[row, column] = marker
            if labels[row, column] == foreground_id:
                foreground += 1
            else:
                other += 1

    for row, start, end in scanline_spans(points, height, width):
        fresh = markers[row, start : end + 1] != marker
        hits = int(np.count_nonzero(labels[row, start : end + 1][fresh] == foreground_id))
        foreground += hits
        other += int(np.count_nonzero(fresh)) - hits
        markers[row, start : end + 1] = marker

    return VoxelCounts(foreground, other)
