"""Utilities."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

import numpy as np
import SimpleITK as sitk

from rtcontour.errors import InvalidInput
from rtcontour.mask.connected_components import find_connected_components_3d


def _as_image(image: Union[sitk.Image, str, Path]) -> sitk.Image:
    if isinstance(image, (str, Path)):
        return sitk.ReadImage(str(image))
    return image


def calculate_volume(image: Union[sitk.Image, str, Path]) -> float:
    """Calculate the volume of a binary mask.

    :param Union[sitk.Image, str, Path] image: The input image or the path to the NIfTI file.
    :return float: The total volume in cubic millimeters (mm^3).
    """
    image = _as_image(image)
    voxel_size = float(np.prod(image.GetSpacing()))
    return float(np.count_nonzero(sitk.GetArrayFromImage(image))) * voxel_size


def get_component_count(image: Union[sitk.Image, str, Path]) -> Tuple[int, List[float]]:
    """Count the face-connected components of a binary image and return their physical sizes.

    :param Union[sitk.Image, str, Path] image: The input image, or the path to a NIfTI file.
    :return Tuple[int, List[float]]: A tuple containing:
        - The number of connected components in the image
        - A list of physical sizes (volumes in mm³) for each component, in scan order
    """
    image = _as_image(image)
    binary = (sitk.GetArrayFromImage(image) != 0).astype(np.uint8)
    _, statistics = find_connected_components_3d(binary, output_dtype=np.uint32)

    voxel_size = float(np.prod(image.GetSpacing()))
    physical_sizes = [round(s.voxel_count * voxel_size, 1) for s in statistics if s.input_label != 0]
    return (len(physical_sizes), physical_sizes)


def get_label_statistics(image: Union[sitk.Image, str, Path], background: int = 0) -> Dict[int, Dict[str, float]]:
    """Summarise each structure label of a multi-label image.

    :param Union[sitk.Image, str, Path] image: Label image, or the path to it.
    :param int background: Background value, defaults to 0
    :return Dict[int, Dict[str, float]]: Per input label: number of components,
        total voxels, total volume in mm³ and the voxel count of the largest component.
    """
    image = _as_image(image)
    _, statistics = find_connected_components_3d(
        sitk.GetArrayFromImage(image), background=background, output_dtype=np.uint32
    )
    voxel_size = float(np.prod(image.GetSpacing()))

    summary: Dict[int, Dict[str, float]] = {}
    for record in statistics:
        if record.input_label == background:
            continue
        entry = summary.setdefault(
            record.input_label, {"components": 0, "voxels": 0, "volume_mm3": 0.0, "largest_component_voxels": 0}
        )
        entry["components"] += 1
        entry["voxels"] += record.voxel_count
        entry["volume_mm3"] = round(entry["voxels"] * voxel_size, 1)
        entry["largest_component_voxels"] = max(entry["largest_component_voxels"], record.voxel_count)
    return summary


@dataclass(frozen=True)
class ContourStatistics:
    """Size and image intensity of one structure."""

    size_cc: float
    voxel_value_mean: float
    voxel_value_std: float


def contour_statistics(
    image: Union[sitk.Image, str, Path], mask: Union[sitk.Image, str, Path], foreground: int = 1
) -> ContourStatistics:
    """Measure a structure on its image.

    :param Union[sitk.Image, str, Path] image: The intensity image (e.g. CT), or the path to it.
    :param Union[sitk.Image, str, Path] mask: Label image on the same grid, or the path to it.
    :param int foreground: Mask value of the structure, defaults to 1
    :raises InvalidInput: If the image and the mask have different sizes.
    :return ContourStatistics: Size in cm³ and the mean and (population) standard deviation
        of the image voxels inside the structure. All zero for an empty structure.
    """
    image, mask = _as_image(image), _as_image(mask)
    values = sitk.GetArrayFromImage(image)
    labels = sitk.GetArrayFromImage(mask)
    if values.shape != labels.shape:
        raise InvalidInput(f"Image and mask differ in size: {values.shape} vs {labels.shape}")

    inside = values[labels == foreground].astype(np.float64)
    if inside.size == 0:
        return ContourStatistics(0.0, 0.0, 0.0)

    voxel_size = float(np.prod(image.GetSpacing()))
    return ContourStatistics(
        size_cc=inside.size * voxel_size / 1000.0,
        voxel_value_mean=float(inside.mean()),
        voxel_value_std=float(inside.std()),
    )
