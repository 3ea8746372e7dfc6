"""Exceptions raised by the contour conversion engine."""

from dataclasses import dataclass
from typing import List, Optional


class ContourConversionError(Exception):
    """Base class for all conversion errors.

    :param str message: Human readable description.
    :param Optional[int] slice_index: Axial slice the error belongs to, if any.
    """

    def __init__(self, message: str, slice_index: Optional[int] = None):
        super().__init__(message)
        self.slice_index = slice_index

    def __str__(self) -> str:
        message = super().__str__()
        if self.slice_index is None:
            return message
        return f"[slice {self.slice_index}] {message}"


class InvalidInput(ContourConversionError, ValueError):
    """Null, wrongly shaped or inconsistent arguments."""


class DegenerateContour(ContourConversionError, ValueError):
    """A boundary that is too short or crosses itself."""


class ComponentOverflow(ContourConversionError, OverflowError):
    """More connected components than the output label type can hold."""


@dataclass(frozen=True)
class SliceMismatch:
    """Foreground counts of one slice that failed the round trip check."""

    slice_index: Optional[int]
    true_count: int
    rendered_count: int

    @property
    def absolute_difference(self) -> int:
        return abs(self.true_count - self.rendered_count)

    @property
    def relative_difference(self) -> Optional[float]:
        if self.true_count == 0:
            return None
        return self.absolute_difference / self.true_count

    def describe(self) -> str:
        relative = self.relative_difference
        relative_text = "n/a" if relative is None else f"{relative:.3f}"
        return (
            f"slice {self.slice_index}: {self.true_count} foreground voxels, "
            f"{self.rendered_count} after rendering the contours "
            f"(absolute difference {self.absolute_difference}, relative difference {relative_text})"
        )


class ReconciliationFailure(ContourConversionError, RuntimeError):
    """Rendering the contours back does not reproduce the mask within tolerance."""

    def __init__(self, mismatches: List[SliceMismatch], label: Optional[str] = None):
        self.mismatches = list(mismatches)
        self.label = label
        prefix = f"Structure '{label}': " if label else ""
        details = "; ".join(mismatch.describe() for mismatch in self.mismatches)
        slice_index = self.mismatches[0].slice_index if len(self.mismatches) == 1 else None
        super().__init__(f"{prefix}contour rendering mismatch on {len(self.mismatches)} slice(s): {details}", slice_index)

    def __reduce__(self):
        return type(self), (self.mismatches, self.label), self.__dict__
