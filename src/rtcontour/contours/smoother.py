"""Conversion of raw traced boundaries into smoothed float polygons.

A raw polygon runs through pixel centres. It is first turned into the crack
path along the outer pixel edges (corner coordinates), which is then either
kept (NONE), simplified with a small turn codebook (SMALL) or relaxed for
display (LARGE). Output points use the pixel-edge convention: pixel (x, y)
covers [x - 0.5, x + 0.5] x [y - 0.5, y + 0.5].
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from rtcontour.contours.tracer import DIRECTIONS
from rtcontour.contours.types import PolygonPoints, SmoothingLevel
from rtcontour.errors import DegenerateContour, InvalidInput

logger = logging.getLogger(__name__)

PIXEL_EDGE_SHIFT = -0.5
COLLINEAR_TOLERANCE = 1e-9

# Pixel corners in clockwise order, as offsets from the pixel's top-left corner.
CORNERS: Tuple[Tuple[int, int], ...] = ((0, 0), (1, 0), (1, 1), (0, 1))
_DIRECTION_INDEX = {delta: index for index, delta in enumerate(DIRECTIONS)}


class Turn(Enum):
    FORWARD = "F"
    LEFT = "L"
    RIGHT = "R"


F, L, R = Turn.FORWARD, Turn.LEFT, Turn.RIGHT

# Replacement fragments in order of decreasing priority. A fragment point (a, b)
# maps to p + a * normal + b * heading at the corner where the pattern starts.
CODEBOOK: Tuple[Tuple[Tuple[Turn, ...], Tuple[Tuple[float, float], ...]], ...] = (
    ((F, R, F), ((0, -0.5), (0, 0.1), (-0.9, 1), (-1.5, 1))),
    ((F, L, F), ((0, -0.5), (0, 0.1), (0.9, 1), (1.5, 1))),
    ((R, F, L), ((0, -0.5), (-2, 0.5))),
    ((L, F, R), ((0, -0.5), (2, 0.5))),
    ((R, L), ((0, -0.5), (-1, 0.5))),
    ((L, R), ((0, -0.5), (1, 0.5))),
    ((R,), ((0, -0.5), (-0.5, 0))),
    ((L,), ((0, -0.5), (0.5, 0))),
)


def pixel_edge_path(points: Union[np.ndarray, Sequence[Tuple[int, int]]]) -> np.ndarray:
    """Walk the outer pixel edges of a clockwise raw polygon.

    Between two consecutive pixels the walk goes clockwise round the current
    pixel up to the corner it shares with the next one, then along the first
    edge of the next pixel.

    :param points: Raw polygon, (x, y) pixel centres.
    :raises InvalidInput: If there are no points.
    :raises DegenerateContour: If two points are not 8-neighbours or the walk does not close.
    :return np.ndarray: (M, 2) integer corner coordinates, pixel (x, y) having top-left corner (x, y).
    """
    pixels = [tuple(p) for p in np.asarray(points, dtype=np.int64).reshape(-1, 2).tolist()]
    if not pixels:
        raise InvalidInput("The polygon does not contain any points.")

    last_equals_first = len(pixels) > 1 and pixels[0] == pixels[-1]
    if len(pixels) == (2 if last_equals_first else 1):
        x, y = pixels[0]
        return np.array([(x + cx, y + cy) for cx, cy in CORNERS], dtype=np.int64)

    path: List[Tuple[int, int]] = []
    x, y = pixels[0]
    corner = 0

    def walk_to(target: int):
        nonlocal corner
        while corner != target:
            corner = (corner + 1) % 4
            path.append((x + CORNERS[corner][0], y + CORNERS[corner][1]))

    for nx, ny in pixels[1:] if last_equals_first else pixels[1:] + pixels[:1]:
        direction = _DIRECTION_INDEX.get((nx - x, ny - y))
        if direction is None:
            raise DegenerateContour(f"Points {(x, y)} and {(nx, ny)} are not neighbours")

        walk_to(((direction + 1) // 2 + 1) % 4)
        corner = (direction // 2 + 1) % 4
        x, y = nx, ny
        path.append((x + CORNERS[corner][0], y + CORNERS[corner][1]))

    walk_to(0)

    gap = (path[0][0] - path[-1][0]) ** 2 + (path[0][1] - path[-1][1]) ** 2
    if gap != 1:
        raise DegenerateContour(
            f"Unable to find a closed contour. The contour started at {path[0]} and ended at {path[-1]}"
        )
    return np.array(path, dtype=np.int64)


def remove_redundant_points(points: np.ndarray, tolerance: float = COLLINEAR_TOLERANCE) -> np.ndarray:
    """Drop repeated vertices and vertices in the middle of straight runs.

    A vertex is dropped only when both adjacent edges point the same way, so
    spikes are left alone.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(points) <= 3:
        return points

    keep = np.any(np.abs(np.diff(points, axis=0)) > 0, axis=1)
    deduped = points[np.concatenate(([True], keep))]
    if len(deduped) > 1 and np.array_equal(deduped[0], deduped[-1]):
        deduped = deduped[:-1]
    if len(deduped) <= 3:
        return deduped

    incoming = deduped - np.roll(deduped, 1, axis=0)
    outgoing = np.roll(deduped, -1, axis=0) - deduped
    cross = incoming[:, 0] * outgoing[:, 1] - incoming[:, 1] * outgoing[:, 0]
    dot = np.einsum("ij,ij->i", incoming, outgoing)
    corner = (np.abs(cross) > tolerance) | (dot <= 0)
    if np.count_nonzero(corner) < 3:
        return deduped
    return deduped[corner]


def turn_string(path: np.ndarray) -> Tuple[Tuple[int, int], Tuple[int, int], List[Turn]]:
    """Express a closed unit-step corner path as turns relative to the heading.

    :param np.ndarray path: Corner path as produced by :func:`pixel_edge_path`.
    :raises DegenerateContour: For fewer than 4 points, or a step that doubles back or is not a unit step.
    :return: The start point, the initial heading (arriving at the start) and the turns.
    """
    corners = [tuple(p) for p in np.asarray(path, dtype=np.int64).tolist()]
    if len(corners) < 4:
        raise DegenerateContour(f"Too few points, expected at least four, got {len(corners)}")

    start, last = corners[0], corners[-1]
    heading = (start[0] - last[0], start[1] - last[1])
    initial_heading = heading
    previous = start
    turns = []

    for i in range(1, len(corners) + 1):
        current = corners[i % len(corners)]
        delta = (current[0] - previous[0], current[1] - previous[1])
        if delta == heading:
            turns.append(Turn.FORWARD)
        elif delta == (-heading[1], heading[0]):
            turns.append(Turn.LEFT)
        elif delta == (heading[1], -heading[0]):
            turns.append(Turn.RIGHT)
        else:
            raise DegenerateContour(f"Degenerate contour: delta = {delta}, heading = {heading}")
        previous = current
        heading = delta

    return start, initial_heading, turns


def _rotate(heading: Tuple[int, int], turn: Turn) -> Tuple[int, int]:
    hx, hy = heading
    if turn is Turn.LEFT:
        return -hy, hx
    if turn is Turn.RIGHT:
        return hy, -hx
    return heading


def trace_turns(
    start: Tuple[int, int], heading: Tuple[int, int], turns: Sequence[Turn]
) -> Tuple[np.ndarray, np.ndarray, bool]:
    """Replay a turn sequence.

    :return: ``points[i]`` is where turn ``i`` happens, ``headings[i]`` the
        heading arriving there, and whether the replay closes on itself.
    """
    count = len(turns)
    points = np.zeros((count + 1, 2), dtype=np.int64)
    headings = np.zeros((count + 1, 2), dtype=np.int64)
    points[0] = start
    headings[0] = heading

    position = start
    for i in range(count + 1):
        heading = _rotate(heading, turns[i % count])
        position = (position[0] + heading[0], position[1] + heading[1])
        if i < count:
            points[i + 1] = position
            headings[i + 1] = heading

    is_closed = tuple(points[0]) == tuple(points[-1]) and tuple(points[1]) == position
    return points, headings, is_closed


def _match_codebook(turns: Sequence[Turn], is_closed: bool) -> List[Optional[Tuple[Tuple[float, float], ...]]]:
    """Assign codebook fragments greedily, pattern by pattern in priority order.

    ``None`` means the turn is not covered by any pattern; an empty tuple means
    it is swallowed by a pattern that starts earlier.
    """
    count = len(turns)
    fragments: List[Optional[Tuple[Tuple[float, float], ...]]] = [None] * count

    for pattern, fragment in CODEBOOK:
        length = len(pattern)
        if length > count:
            continue
        last_start = count - 1 if is_closed else count - length
        for start in range(last_start + 1):
            covered = [(start + offset) % count for offset in range(length)]
            if any(turns[i] is not expected for i, expected in zip(covered, pattern)):
                continue
            if any(fragments[i] is not None for i in covered):
                continue
            fragments[start] = fragment
            for i in covered[1:]:
                fragments[i] = ()
    return fragments


def small_smooth(raw_points: np.ndarray) -> np.ndarray:
    """Codebook smoothing of a raw polygon; keeps every point within a pixel of the pixel outline."""
    start, heading, turns = turn_string(pixel_edge_path(raw_points))
    points, headings, is_closed = trace_turns(start, heading, turns)
    if not is_closed:
        logger.warning(f"Turn sequence starting at {start} does not close; matching without wrap-around")

    fragments = _match_codebook(turns, is_closed)
    smoothed = []
    for i, fragment in enumerate(fragments):
        if not fragment:
            continue
        forward = headings[i].astype(np.float64)
        normal = np.array([-forward[1], forward[0]])
        for along_normal, along_heading in fragment:
            smoothed.append(points[i] + along_normal * normal + along_heading * forward)

    return remove_redundant_points(np.array(smoothed, dtype=np.float64).reshape(-1, 2) + PIXEL_EDGE_SHIFT)


def exact_outline(raw_points: np.ndarray) -> np.ndarray:
    """Pixel outline of a raw polygon in pixel-edge coordinates, without redundant points."""
    return remove_redundant_points(pixel_edge_path(raw_points).astype(np.float64) + PIXEL_EDGE_SHIFT)


def large_smooth(raw_points: np.ndarray, strength: float = 0.5, iterations: int = 5) -> np.ndarray:
    """Densify the pixel outline (two extra points per edge) and relax it by neighbour averaging."""
    outline = exact_outline(raw_points)
    following = np.roll(outline, -1, axis=0)
    dense = np.empty((len(outline) * 3, 2), dtype=np.float64)
    dense[0::3] = outline
    dense[1::3] = outline + (following - outline) / 3.0
    dense[2::3] = outline + 2.0 * (following - outline) / 3.0

    for _ in range(iterations):
        neighbours = (np.roll(dense, 1, axis=0) + np.roll(dense, -1, axis=0)) / 2.0
        dense = (1.0 - strength) * dense + strength * neighbours
    return dense


def smooth_polygon(
    polygon: Union[PolygonPoints, np.ndarray],
    level: SmoothingLevel = SmoothingLevel.SMALL,
    strength: float = 0.5,
    iterations: int = 5,
) -> np.ndarray:
    """Turn a raw traced polygon into a float polygon at the requested smoothing level.

    :param Union[PolygonPoints, np.ndarray] polygon: Raw polygon (pixel centres).
    :param SmoothingLevel level: Smoothing level, defaults to SmoothingLevel.SMALL
    :param float strength: Averaging weight for LARGE, defaults to 0.5
    :param int iterations: Averaging rounds for LARGE, defaults to 5
    :raises DegenerateContour: If the boundary is too short or crosses itself.
    :return np.ndarray: (N, 2) float polygon in pixel-edge coordinates.
    """
    raw_points = polygon.points if isinstance(polygon, PolygonPoints) else np.asarray(polygon)
    level = SmoothingLevel.parse(level)

    if level is SmoothingLevel.NONE:
        return exact_outline(raw_points)
    if level is SmoothingLevel.SMALL:
        return small_smooth(raw_points)
    return large_smooth(raw_points, strength, iterations)
