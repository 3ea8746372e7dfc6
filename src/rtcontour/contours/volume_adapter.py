"""Slice-parallel contour extraction, verification and reconstruction for 3D label volumes."""

import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np
from tqdm import tqdm

from rtcontour.config import ContourSettings
from rtcontour.contours.filler import fill_polygon, fill_polygons
from rtcontour.contours.smoother import smooth_polygon
from rtcontour.contours.tracer import trace_polygons
from rtcontour.contours.transform import VolumeTransform
from rtcontour.contours.types import ContourPolygon, ContoursPerSlice, SmoothingLevel
from rtcontour.errors import ContourConversionError, InvalidInput, ReconciliationFailure, SliceMismatch
from rtcontour.utils.logger import logger as package_logger

T = TypeVar("T")


# Slice tasks live at module level so worker processes can unpickle them.


def extract_slice_task(
    label_slice: np.ndarray,
    foreground_id: int,
    background_id: int,
    level: SmoothingLevel,
    strength: float,
    iterations: int,
) -> List[ContourPolygon]:
    """Trace one slice and smooth every traced polygon at ``level``."""
    return [
        ContourPolygon(
            smooth_polygon(polygon, level, strength=strength, iterations=iterations),
            polygon.enclosed_pixels,
        )
        for polygon in trace_polygons(label_slice, foreground_id, background_id)
    ]


def rendering_acceptable(
    true_count: int, rendered_count: int, max_absolute: Optional[int], max_relative: Optional[float]
) -> bool:
    """Fails only when both the absolute and the relative difference are above their limits.

    A disabled (None) limit never fails, and a slice without true foreground
    has no relative difference.
    """
    difference = abs(true_count - rendered_count)
    if max_absolute is not None and difference <= max_absolute:
        return True
    if max_relative is None or true_count <= 0:
        return True
    return difference / true_count <= max_relative


def verify_slice_task(
    slice_index: int,
    label_slice: np.ndarray,
    polygons: Sequence[ContourPolygon],
    foreground_id: int,
    max_absolute: Optional[int],
    max_relative: Optional[float],
) -> Optional[SliceMismatch]:
    """Render the polygons of one slice and compare the count with the slice's foreground."""
    true_count = int(np.count_nonzero(label_slice == foreground_id))
    canvas = np.zeros(label_slice.shape, dtype=np.uint8)
    fill_polygons(polygons, canvas, 1)
    rendered_count = int(np.count_nonzero(canvas))
    if rendering_acceptable(true_count, rendered_count, max_absolute, max_relative):
        return None
    return SliceMismatch(slice_index, true_count, rendered_count)


class ContourVolumeAdapter:
    """Converts label volumes to per-slice contours and back.

    Volumes are numpy arrays in (z, y, x) order, as returned by
    ``SimpleITK.GetArrayFromImage``. Each axial slice is an independent task
    run on a process pool; with ``max_workers=1`` slices run in this process.
    """

    def __init__(self, settings: Optional[ContourSettings] = None, logger: Optional[logging.Logger] = None):
        """
        :param Optional[ContourSettings] settings: Conversion settings, defaults to ContourSettings()
        :param Optional[logging.Logger] logger: Optional logger object, defaults to the package logger.
        """
        self.settings = settings or ContourSettings()
        self.logger = logger or package_logger

    @property
    def worker_count(self) -> int:
        return self.settings.max_workers or os.cpu_count() or 1

    def _check_volume(self, volume: np.ndarray) -> np.ndarray:
        if volume is None:
            raise InvalidInput("The volume is None")
        volume = np.asarray(volume)
        if volume.ndim != 3:
            raise InvalidInput(f"Expected a 3D volume in (z, y, x) order, got {volume.ndim} dimensions")
        return volume

    def _run_per_slice(
        self, task: Callable[..., T], arguments: Mapping[int, tuple], description: str
    ) -> Dict[int, T]:
        """Run ``task(*arguments[z])`` for every slice z and wait for all of them.

        Failures are collected; once every slice has finished, the failure on
        the lowest slice is raised. Results of other slices are not touched.
        """
        results: Dict[int, T] = {}
        errors: Dict[int, Exception] = {}
        workers = min(self.worker_count, len(arguments))

        if workers <= 1:
            items = arguments.items()
            if self.settings.show_progress:
                items = tqdm(items, total=len(arguments), desc=description, leave=False)
            for index, args in items:
                try:
                    results[index] = task(*args)
                except Exception as e:
                    errors[index] = e
        else:
            with ProcessPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(task, *args): index for index, args in arguments.items()}
                completed = as_completed(futures)
                if self.settings.show_progress:
                    completed = tqdm(completed, total=len(futures), desc=description, leave=False)

                for future in completed:
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        errors[index] = e

        if errors:
            for index in sorted(errors):
                self.logger.error(f"{description}: slice {index} failed: {errors[index]}")
            first = min(errors)
            error = errors[first]
            if isinstance(error, ContourConversionError) and error.slice_index is None:
                error.slice_index = first
            raise error
        return results

    def extract_slice(
        self,
        label_slice: np.ndarray,
        foreground_id: int = 1,
        background_id: int = 0,
        level: Optional[Union[SmoothingLevel, str]] = None,
    ) -> List[ContourPolygon]:
        """Trace and smooth the regions of one slice.

        :param np.ndarray label_slice: 2D label grid indexed [y, x].
        :param int foreground_id: Label to contour, defaults to 1
        :param int background_id: Background label, defaults to 0
        :param Optional[Union[SmoothingLevel, str]] level: Smoothing level, defaults to the configured level.
        :return List[ContourPolygon]: One polygon per region, holes closed.
        """
        level = SmoothingLevel.parse(level or self.settings.smoothing)
        return extract_slice_task(
            label_slice,
            foreground_id,
            background_id,
            level,
            self.settings.large_smoothing_strength,
            self.settings.large_smoothing_iterations,
        )

    def extract_contours(
        self,
        volume: np.ndarray,
        foreground_id: int = 1,
        background_id: int = 0,
        level: Optional[Union[SmoothingLevel, str]] = None,
        *,
        verify: bool = True,
        label: Optional[str] = None,
    ) -> ContoursPerSlice:
        """Extract the contours of one label on every axial slice.

        :param np.ndarray volume: 3D label volume in (z, y, x) order.
        :param int foreground_id: Label to contour, defaults to 1
        :param int background_id: Background label, defaults to 0
        :param Optional[Union[SmoothingLevel, str]] level: NONE or SMALL, defaults to the configured level.
        :param bool verify: Render the contours back and compare per slice, defaults to True
        :param Optional[str] label: Structure name used in messages, defaults to None
        :raises InvalidInput: For bad volumes, equal ids or the display-only LARGE level.
        :raises ReconciliationFailure: If verification fails on any slice.
        :return ContoursPerSlice: The contours keyed by slice index.
        """
        volume = self._check_volume(volume)
        if foreground_id == background_id:
            raise InvalidInput("The foreground ID cannot be the same as the background ID")
        level = SmoothingLevel.parse(level or self.settings.smoothing)
        if level is SmoothingLevel.LARGE:
            raise InvalidInput("LARGE smoothing is for display only and cannot be used for extraction")

        name = label or f"label {foreground_id}"
        self.logger.info(f"Extracting contours for {name} ({level.value} smoothing) from {volume.shape[0]} slices")

        strength = self.settings.large_smoothing_strength
        iterations = self.settings.large_smoothing_iterations
        per_slice = self._run_per_slice(
            extract_slice_task,
            {z: (volume[z], foreground_id, background_id, level, strength, iterations) for z in range(volume.shape[0])},
            f"Extracting {name}",
        )
        contours = ContoursPerSlice.from_items(
            ((z, polygons) for z, polygons in per_slice.items() if polygons or not self.settings.filter_empty_slices),
            level,
        )

        if verify:
            self.verify_contours(volume, contours, foreground_id, label=label)

        self.logger.info(f"{name}: {contours.polygon_count} polygon(s) on {len(contours.slices_with_contours())} slice(s)")
        return contours

    def is_rendering_acceptable(self, true_count: int, rendered_count: int) -> bool:
        """Whether a rendered count is close enough to the true count.

        Fails only when the absolute difference is above
        ``max_absolute_difference`` and the relative difference is above
        ``max_relative_difference``.
        """
        return rendering_acceptable(
            true_count, rendered_count, self.settings.max_absolute_difference, self.settings.max_relative_difference
        )

    def check_rendering(
        self, true_count: int, rendered_count: int, slice_index: Optional[int] = None, label: Optional[str] = None
    ) -> None:
        """Raise ReconciliationFailure when a rendered count is out of tolerance."""
        if not self.is_rendering_acceptable(true_count, rendered_count):
            raise ReconciliationFailure([SliceMismatch(slice_index, int(true_count), int(rendered_count))], label)

    def verify_contours(
        self,
        volume: np.ndarray,
        contours: Mapping[int, Sequence[ContourPolygon]],
        foreground_id: int = 1,
        *,
        label: Optional[str] = None,
    ) -> None:
        """Render the contours of each slice back and compare foreground counts with the volume.

        Every slice of the volume is checked, including slices without contours.

        :raises ReconciliationFailure: With all mismatching slices, if any.
        """
        volume = self._check_volume(volume)
        max_absolute = self.settings.max_absolute_difference
        max_relative = self.settings.max_relative_difference

        results = self._run_per_slice(
            verify_slice_task,
            {
                z: (z, volume[z], list(contours.get(z, ())), foreground_id, max_absolute, max_relative)
                for z in range(volume.shape[0])
            },
            f"Verifying {label or 'contours'}",
        )
        mismatches = [results[z] for z in sorted(results) if results[z] is not None]
        if mismatches:
            failure = ReconciliationFailure(mismatches, label)
            self.logger.error(str(failure))
            raise failure

    def extract_structures(
        self,
        volume: np.ndarray,
        structures: Mapping[str, int],
        background_id: int = 0,
        level: Optional[Union[SmoothingLevel, str]] = None,
    ) -> Tuple[Dict[str, ContoursPerSlice], Dict[str, ContourConversionError]]:
        """Extract several labelled structures; a failing structure does not stop the others.

        :param np.ndarray volume: 3D label volume in (z, y, x) order.
        :param Mapping[str, int] structures: Structure name to label value.
        :return: Contours of the structures that converted, and the error of each that did not.
        """
        converted: Dict[str, ContoursPerSlice] = {}
        failed: Dict[str, ContourConversionError] = {}
        for name, foreground_id in structures.items():
            try:
                converted[name] = self.extract_contours(volume, foreground_id, background_id, level, label=name)
            except ContourConversionError as e:
                self.logger.warning(f"Structure '{name}' was not converted: {e}")
                failed[name] = e
        return converted, failed

    @staticmethod
    def contours_to_mask(
        contours: Mapping[int, Sequence[ContourPolygon]],
        shape: Tuple[int, int, int],
        value: int = 1,
        background: int = 0,
        dtype=np.uint8,
        logger: Optional[logging.Logger] = None,
    ) -> np.ndarray:
        """Rasterise stored contours into a new (z, y, x) volume.

        Slices outside the volume are skipped with a warning.
        """
        if len(shape) != 3:
            raise InvalidInput(f"Expected a 3D shape, got {shape}")
        logger = logger or package_logger
        mask = np.full(shape, background, dtype=dtype)
        for z, polygons in contours.items():
            if not 0 <= z < shape[0]:
                logger.warning(f"Skipping contours on slice {z}: outside the volume of {shape[0]} slices")
                continue
            for polygon in polygons:
                fill_polygon(polygon, mask[z], value)
        return mask

    @staticmethod
    def to_physical(
        contours: Mapping[int, Sequence[ContourPolygon]], transform: VolumeTransform
    ) -> Dict[int, List[np.ndarray]]:
        """Map each polygon to physical (N, 3) points; z comes from the slice index."""
        return {
            z: [transform.slice_to_physical(polygon.points, z) for polygon in polygons]
            for z, polygons in contours.items()
        }

    @staticmethod
    def from_physical(
        polygons: Iterable[np.ndarray],
        transform: VolumeTransform,
        smoothing: Optional[SmoothingLevel] = SmoothingLevel.SMALL,
    ) -> ContoursPerSlice:
        """Group physical (N, 3) polygons into slices.

        The slice of a polygon is its data z coordinate rounded to the nearest
        integer; every point of the polygon must fall on that slice.

        :raises InvalidInput: If a polygon spans more than one slice.
        """
        grouped: Dict[int, List[ContourPolygon]] = {}
        for physical in polygons:
            data = transform.physical_to_data(np.asarray(physical, dtype=np.float64).reshape(-1, 3))
            if len(data) == 0:
                continue
            z = int(np.rint(data[0, 2]))
            if np.any(np.rint(data[:, 2]).astype(int) != z):
                raise InvalidInput(f"Contour is not planar: its points lie on more than one slice (first on {z})")
            grouped.setdefault(z, []).append(ContourPolygon(data[:, :2]))
        return ContoursPerSlice(grouped, smoothing)
