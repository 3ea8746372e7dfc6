"""Value types shared by the tracer, smoother, filler and volume adapter."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np


class SmoothingLevel(Enum):
    """How much a traced pixel boundary is smoothed.

    NONE keeps the exact pixel outline, SMALL applies the turn codebook and is
    the only level that may be written to a structure set. LARGE is for
    display only.
    """

    NONE = "none"
    SMALL = "small"
    LARGE = "large"

    @classmethod
    def parse(cls, value) -> "SmoothingLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown smoothing level '{value}', expected one of {[m.value for m in cls]}")


@dataclass(frozen=True)
class VoxelCounts:
    """Pixels enclosed by a polygon, split by whether they carry the foreground label."""

    foreground: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.foreground + self.other

    def __add__(self, other: "VoxelCounts") -> "VoxelCounts":
        return VoxelCounts(self.foreground + other.foreground, self.other + other.other)


@dataclass(eq=False)
class PolygonPoints:
    """A raw traced boundary.

    Points are pixel centres as an (N, 2) integer array of (x, y) rows, in
    clockwise order, implicitly closed. Consecutive points are 8-neighbours.
    """

    points: np.ndarray
    voxel_counts: VoxelCounts
    start: Tuple[int, int]

    @property
    def enclosed_pixels(self) -> int:
        return self.voxel_counts.total

    def __len__(self) -> int:
        return len(self.points)


@dataclass(eq=False)
class ContourPolygon:
    """A smoothed polygon in pixel-edge coordinates, (N, 2) float array of (x, y) rows."""

    points: np.ndarray
    region_area_pixels: int = 0

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)

    def __len__(self) -> int:
        return len(self.points)

    def translated(self, dx: float, dy: float) -> "ContourPolygon":
        return ContourPolygon(self.points + np.array([dx, dy]), self.region_area_pixels)


@dataclass(eq=False)
class ContoursPerSlice(Mapping):
    """Read-only mapping from axial slice index to the contours on that slice."""

    contours: Dict[int, List[ContourPolygon]] = field(default_factory=dict)
    smoothing: Optional[SmoothingLevel] = None

    @classmethod
    def from_items(
        cls, items: Iterable[Tuple[int, List[ContourPolygon]]], smoothing: Optional[SmoothingLevel] = None
    ) -> "ContoursPerSlice":
        return cls({int(index): list(polygons) for index, polygons in items}, smoothing)

    def __getitem__(self, slice_index: int) -> List[ContourPolygon]:
        return self.contours[slice_index]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self.contours))

    def __len__(self) -> int:
        return len(self.contours)

    @property
    def slice_count(self) -> int:
        return len(self.contours)

    @property
    def polygon_count(self) -> int:
        return sum(len(polygons) for polygons in self.contours.values())

    def slices_with_contours(self) -> List[int]:
        return sorted(index for index, polygons in self.contours.items() if polygons)

    def min_max_slices(self) -> Optional[Tuple[int, int]]:
        """First and last slice holding at least one polygon, or None when empty."""
        occupied = self.slices_with_contours()
        if not occupied:
            return None
        return occupied[0], occupied[-1]


@dataclass(frozen=True)
class ComponentStatistics:
    """One connected component: its output id, the input value it came from and its size."""

    id: int
    input_label: int
    voxel_count: int
