"""Module for Post-processing of Segmentation Masks."""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import SimpleITK as sitk

from rtcontour.mask.connected_components import find_connected_components_3d
from rtcontour.utils.logger import logger as package_logger


def _read_image(input_data: Union[sitk.Image, str, Path]) -> sitk.Image:
    if isinstance(input_data, (str, Path)):
        if not Path(input_data).exists():
            raise FileNotFoundError(f"Input file not found: {input_data}")
        try:
            return sitk.ReadImage(str(input_data))
        except Exception as e:
            raise IOError(f"Error reading input file: {e}")
    return input_data


def _write_or_return(image: sitk.Image, output_path: Optional[Union[str, Path]]) -> Optional[sitk.Image]:
    if not output_path:
        return image
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        sitk.WriteImage(image, str(output_path), True)
    except Exception as e:
        raise IOError(f"Error writing output file {output_path}: {e}")
    return None


class MaskPostProcessor:
    """Static methods for mask postprocessing."""

    @staticmethod
    def remove_islands_thr(
        input_data: Union[sitk.Image, str, Path],
        output_path: Optional[Union[str, Path]] = None,
        thr: float = 0.3,
        logger: Optional[logging.Logger] = None,
    ) -> Optional[sitk.Image]:
        """Removes disconnected components smaller than a fraction of the largest one.

        Components are face-connected (6-connectivity) runs of non-zero voxels.

        :param Union[sitk.Image, str, Path] input_data: A binary mask, as image or path to a .nii.gz file.
        :param Optional[Union[str, Path]] output_path: Path to save the cleaned mask.
        If None, returns the image., defaults to None
        :param float thr: Components with fewer voxels than thr times the largest component are removed,
            defaults to 0.3
        :param Optional[logging.Logger] logger: Optional logger object, defaults to the package logger.
        :raises ValueError: If thr is not between 0 and 1.
        :raises FileNotFoundError: If the input file doesn't exist.
        :raises IOError: If the input cannot be read or the output cannot be written.
        :return Optional[sitk.Image]: The cleaned mask if output_path is None, otherwise None after saving to file.
        """
        if not 0 <= thr <= 1:
            raise ValueError(f"Threshold must be between 0 and 1, got {thr}")
        logger = logger or package_logger

        image = _read_image(input_data)
        binary = (sitk.GetArrayFromImage(image) != 0).astype(np.uint8)
        labels, statistics = find_connected_components_3d(binary, output_dtype=np.uint32)

        components = [s for s in statistics if s.input_label != 0]
        result = np.zeros_like(binary)
        if components:
            largest = max(s.voxel_count for s in components)
            kept = [s.id for s in components if s.voxel_count >= largest * thr]
            result[np.isin(labels, kept)] = 1
            logger.info(f"Kept {len(kept)} of {len(components)} component(s) (threshold {thr})")

        result_image = sitk.GetImageFromArray(result)
        result_image.CopyInformation(image)
        return _write_or_return(result_image, output_path)

    @staticmethod
    def keep_largest_component(
        input_data: Union[sitk.Image, str, Path], output_path: Optional[Union[str, Path]] = None
    ) -> Optional[sitk.Image]:
        """Keep only the largest face-connected component of a binary mask.

        :param Union[sitk.Image, str, Path] input_data: A binary mask, as image or path.
        :param Optional[Union[str, Path]] output_path: Path to save the result, defaults to None
        :return Optional[sitk.Image]: The mask if output_path is None, otherwise None after saving to file.
        """
        return MaskPostProcessor.remove_islands_thr(input_data, output_path, thr=1.0)
