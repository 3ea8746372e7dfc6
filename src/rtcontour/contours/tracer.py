"""Boundary tracing of the foreground regions of a 2D label slice."""

import logging
from typing import List, Optional, Tuple

import numpy as np

from rtcontour.contours.filler import fill_polygon_and_count
from rtcontour.contours.types import PolygonPoints
from rtcontour.errors import DegenerateContour, InvalidInput

logger = logging.getLogger(__name__)

# Moore neighbourhood in clockwise order (image y axis points down), starting east.
DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (1, 0),
    (1, 1),
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
    (0, -1),
    (1, -1),
)


def _next_neighbour(
    foreground: np.ndarray, markers: np.ndarray, x: int, y: int, search_from: int
) -> Optional[Tuple[int, int, int]]:
    """First unmarked foreground neighbour clockwise from ``search_from``, as (direction, x, y)."""
    height, width = foreground.shape
    for step in range(8):
        direction = (search_from + step) % 8
        dx, dy = DIRECTIONS[direction]
        nx, ny = x + dx, y + dy
        if 0 <= nx < width and 0 <= ny < height and foreground[ny, nx] and markers[ny, nx] == 0:
            return direction, nx, ny
    return None


def _walk_boundary(foreground: np.ndarray, markers: np.ndarray, start: Tuple[int, int], max_steps: int) -> np.ndarray:
    """Clockwise Moore walk around the region containing ``start``.

    ``start`` must be the first pixel of its region in raster order. The walk
    stops when it is about to leave ``start`` in the same direction as its
    first step, so start pixels that are cut vertices are passed through.
    """
    x, y = start
    points = [start]
    search_from = 0
    first_direction = None

    while True:
        found = _next_neighbour(foreground, markers, x, y, search_from)
        if found is None:
            # isolated pixel
            return np.array(points, dtype=np.int64)

        direction, nx, ny = found
        if first_direction is None:
            first_direction = direction
        elif (x, y) == start and direction == first_direction:
            break

        points.append((nx, ny))
        if len(points) > max_steps:
            raise DegenerateContour(f"Boundary walk from {start} did not close after {max_steps} steps")
        x, y = nx, ny
        search_from = (direction + 6) % 8

    # the walk re-entered the start pixel before stopping
    points.pop()
    return np.array(points, dtype=np.int64)


def trace_polygons(label_slice: np.ndarray, foreground_id: int = 1, background_id: int = 0) -> List[PolygonPoints]:
    """Extract one closed boundary polygon per foreground region of a slice.

    Regions are discovered in raster order. Each traced boundary is filled
    into a private marker grid straight away, which marks the region as done
    and closes its holes, so islands inside a hole belong to the enclosing
    polygon.

    :param np.ndarray label_slice: 2D label grid indexed [y, x].
    :param int foreground_id: Label of the structure to trace, defaults to 1
    :param int background_id: Background label, defaults to 0
    :raises InvalidInput: If the slice is not 2D or the ids coincide.
    :raises DegenerateContour: If a boundary walk does not terminate.
    :return List[PolygonPoints]: Raw polygons with their enclosed pixel counts.
    """
    if label_slice is None:
        raise InvalidInput("The slice is None")
    label_slice = np.asarray(label_slice)
    if label_slice.ndim != 2:
        raise InvalidInput(f"Expected a 2D slice, got {label_slice.ndim} dimensions")
    if foreground_id == background_id:
        raise InvalidInput("The foreground ID cannot be the same as the background ID")

    foreground = label_slice == foreground_id
    markers = np.zeros(label_slice.shape, dtype=np.int32)
    max_steps = 8 * int(np.count_nonzero(foreground)) + 8
    width = label_slice.shape[1]

    polygons = []
    marker = 0
    for index in np.flatnonzero(foreground).tolist():
        y, x = divmod(index, width)
        if markers[y, x] != 0:
            continue

        points = _walk_boundary(foreground, markers, (x, y), max_steps)
        marker += 1
        counts = fill_polygon_and_count(points, markers, marker, label_slice, foreground_id)
        polygons.append(PolygonPoints(points, counts, (x, y)))

    logger.debug(f"Traced {len(polygons)} polygon(s) for label {foreground_id}")
    return polygons
