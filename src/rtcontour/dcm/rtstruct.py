"""RTSTRUCT Modality related tools."""

import datetime
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pydicom
import SimpleITK as sitk
from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.sequence import Sequence as DicomSequence
from pydicom.uid import ExplicitVRLittleEndian, generate_uid
from scipy.ndimage import binary_fill_holes

from rtcontour.contours.transform import VolumeTransform
from rtcontour.contours.types import ContoursPerSlice, SmoothingLevel
from rtcontour.contours.volume_adapter import ContourVolumeAdapter
from rtcontour.errors import InvalidInput
from rtcontour.utils.logger import logger as package_logger

RTSTRUCT_SOP_CLASS_UID = "1.2.840.10008.5.1.4.1.1.481.3"
CLOSED_PLANAR = "CLOSED_PLANAR"

DEFAULT_COLORS = [
    (255, 0, 0),
    (0, 255, 0),
    (0, 0, 255),
    (255, 255, 0),
    (255, 0, 255),
    (0, 255, 255),
    (255, 128, 0),
    (128, 0, 255),
]


class RTStruct:
    """RTSTRUCT class: reads contours into slices and writes smoothed contours as ROIs."""

    def __init__(
        self,
        rtstruct: Union[Path, str, Dataset],
        referenced_image: Optional[Union[str, List[str], Path, sitk.Image]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the RTStruct object.

        :param rtstruct: Path to the RTSTRUCT DICOM file, a directory containing it, or a loaded dataset.
        :param referenced_image: The referenced image (SimpleITK image, DICOM folder, list of files or NIfTI file),
        defaults to None.
        :param logger: Optional logger object, defaults to the package logger.
        :raises FileNotFoundError: If the RTSTRUCT path does not exist or no DICOM file is found in the directory.
        :raises IOError: If the RTSTRUCT file cannot be read.
        """
        self.logger = logger or package_logger
        self.rtstruct_path = None

        if isinstance(rtstruct, Dataset):
            self.rtstruct = rtstruct
        else:
            self.rtstruct = self._read(Path(rtstruct))

        self._index_rois()

        self.referenced_image = None
        self.transform = None
        if referenced_image is not None:
            self.set_reference_image(referenced_image)

    def _read(self, rtstruct_path: Path) -> Dataset:
        if not rtstruct_path.exists():
            raise FileNotFoundError(f"RTSTRUCT path does not exist: {rtstruct_path}")

        if rtstruct_path.is_dir():
            dcm_files = sorted(rtstruct_path.glob("*.dcm"))
            if not dcm_files:
                raise FileNotFoundError(f"No DICOM files found in directory: {rtstruct_path}")
            rtstruct_path = dcm_files[0]
            self.logger.info(f"Using first DICOM file from directory: {rtstruct_path}")

        self.rtstruct_path = rtstruct_path
        try:
            dataset = pydicom.dcmread(rtstruct_path)
        except Exception as e:
            self.logger.error(f"Failed to read RTSTRUCT file: {e}")
            raise IOError(f"Failed to read RTSTRUCT file: {e}")
        self.logger.info(f"Loaded RTSTRUCT from {rtstruct_path}")
        return dataset

    @classmethod
    def create_empty(
        cls, referenced_image: Union[str, List[str], Path, sitk.Image], logger: logging.Logger = None
    ) -> "RTStruct":
        """Start a new RTSTRUCT without any ROI for the given image.

        :param referenced_image: The image the contours will be drawn on.
        :param logger: Optional logger object, defaults to the package logger.
        :return RTStruct: The new structure set.
        """
        sop_instance_uid = generate_uid()
        file_meta = FileMetaDataset()
        file_meta.MediaStorageSOPClassUID = RTSTRUCT_SOP_CLASS_UID
        file_meta.MediaStorageSOPInstanceUID = sop_instance_uid
        file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

        now = datetime.datetime.now()
        dataset = Dataset()
        dataset.file_meta = file_meta
        dataset.SOPClassUID = RTSTRUCT_SOP_CLASS_UID
        dataset.SOPInstanceUID = sop_instance_uid
        dataset.Modality = "RTSTRUCT"
        dataset.StudyInstanceUID = generate_uid()
        dataset.SeriesInstanceUID = generate_uid()
        dataset.FrameOfReferenceUID = generate_uid()
        dataset.StructureSetLabel = "RTCONTOUR"
        dataset.StructureSetDate = now.strftime("%Y%m%d")
        dataset.StructureSetTime = now.strftime("%H%M%S")

        frame = Dataset()
        frame.FrameOfReferenceUID = dataset.FrameOfReferenceUID
        dataset.ReferencedFrameOfReferenceSequence = DicomSequence([frame])
        dataset.StructureSetROISequence = DicomSequence()
        dataset.ROIContourSequence = DicomSequence()
        dataset.RTROIObservationsSequence = DicomSequence()

        return cls(dataset, referenced_image, logger)

    def _index_rois(self) -> None:
        self.roi_dict = {
            roi.get("ROIName"): (indx, roi.get("ROINumber"))
            for indx, roi in enumerate(self.rtstruct.get("StructureSetROISequence", []))
        }

    @property
    def roi_names(self) -> List[str]:
        return list(self.roi_dict)

    def set_reference_image(self, referenced_image: Union[str, List[str], Path, sitk.Image]) -> None:
        """Set the reference image for the RTSTRUCT and derive its index-to-patient transform.

        :param Union[str, List[str], Path, sitk.Image] referenced_image: Image, DICOM directory,
        list of DICOM files, or NIfTI file.
        :raises InvalidInput: If the image is not 3D.
        """
        try:
            if isinstance(referenced_image, sitk.Image):
                self.referenced_image = referenced_image
            elif isinstance(referenced_image, list):
                self._set_dicom_reference(referenced_image)
            else:
                path = Path(referenced_image)
                if path.is_dir():
                    self._set_dicom_reference(path)
                else:
                    self.referenced_image = sitk.ReadImage(str(path))
                    self.logger.info(f"Loaded referenced image from {path}")
            self.transform = VolumeTransform.from_image(self.referenced_image)
        except Exception as e:
            self.logger.error(f"Failed to set reference image: {e}")
            raise

    def _set_dicom_reference(self, referenced_image_path: Union[str, Path, List[str]]) -> None:
        """Load a DICOM series as the reference image."""
        reader = sitk.ImageSeriesReader()
        if isinstance(referenced_image_path, list):
            dicom_files = [str(Path(f)) for f in referenced_image_path]
        else:
            dicom_files = reader.GetGDCMSeriesFileNames(str(referenced_image_path))
        reader.SetFileNames(dicom_files)
        self.referenced_image = reader.Execute()
        self.logger.info("Referenced DICOM image loaded successfully.")

    def _require_reference(self) -> None:
        if self.referenced_image is None:
            raise InvalidInput("Referenced image not set. Please provide a DICOM or NIfTI image.")

    @property
    def volume_shape(self) -> Tuple[int, int, int]:
        self._require_reference()
        return tuple(self.referenced_image.GetSize()[::-1])

    def _roi_contour(self, roi_name: str) -> Optional[Dataset]:
        if roi_name not in self.roi_dict:
            raise ValueError(f"ROI '{roi_name}' not found in ROI dictionary")

        roi_number = self.roi_dict[roi_name][1]
        for roi_contour in self.rtstruct.get("ROIContourSequence", []):
            if roi_contour.get("ReferencedROINumber") == roi_number:
                return roi_contour
        return None

    def get_contours(self, roi_name: str) -> ContoursPerSlice:
        """Read the contours of an ROI, grouped by slice of the referenced image.

        Only CLOSED_PLANAR contours are used; other geometric types are skipped with a warning.

        :param str roi_name: Name of the ROI.
        :raises ValueError: If the ROI name is not found in the RTSTRUCT.
        :raises InvalidInput: If no reference image is set or a contour is not planar.
        :return ContoursPerSlice: The contours in index coordinates.
        """
        self._require_reference()
        roi_contour = self._roi_contour(roi_name)
        if roi_contour is None or "ContourSequence" not in roi_contour:
            self.logger.warning(f"ROI '{roi_name}' has no ContourSequence")
            return ContoursPerSlice(smoothing=SmoothingLevel.SMALL)

        polygons = []
        skipped: Dict[str, int] = {}
        for contour in roi_contour.ContourSequence:
            geometric_type = contour.get("ContourGeometricType", CLOSED_PLANAR)
            if geometric_type != CLOSED_PLANAR:
                skipped[geometric_type] = skipped.get(geometric_type, 0) + 1
                continue
            contour_data = contour.get("ContourData")
            if not contour_data or len(contour_data) < 3:
                continue
            polygons.append(np.array([float(v) for v in contour_data]).reshape(-1, 3))

        for geometric_type, count in skipped.items():
            self.logger.warning(f"ROI '{roi_name}': dropped {count} contour(s) of type {geometric_type}")

        return ContourVolumeAdapter.from_physical(polygons, self.transform, SmoothingLevel.SMALL)

    def get_binary_mask(self, roi_name: str, *, fill_holes: bool = False) -> sitk.Image:
        """Generate a binary mask for a specified ROI.

        :param str roi_name: Name of the ROI to extract.
        :param bool fill_holes: Whether to fill holes in each slice of the mask, defaults to False
        :raises ValueError: If the ROI name is not found in the RTSTRUCT.
        :return sitk.Image: Binary mask with the geometry of the referenced image.
        """
        contours = self.get_contours(roi_name)
        mask_array = ContourVolumeAdapter.contours_to_mask(contours, self.volume_shape, logger=self.logger)

        if fill_holes:
            for slice_idx in contours.slices_with_contours():
                if 0 <= slice_idx < mask_array.shape[0]:
                    mask_array[slice_idx] = binary_fill_holes(mask_array[slice_idx]).astype(np.uint8)

        mask_sitk = sitk.GetImageFromArray(mask_array)
        mask_sitk.CopyInformation(self.referenced_image)
        return mask_sitk

    def _frame_of_reference_uid(self) -> str:
        frames = self.rtstruct.get("ReferencedFrameOfReferenceSequence", [])
        if frames and "FrameOfReferenceUID" in frames[0]:
            return frames[0].FrameOfReferenceUID
        return self.rtstruct.get("FrameOfReferenceUID", "")

    def add_roi(
        self,
        roi_name: str,
        contours: ContoursPerSlice,
        color: Optional[Sequence[int]] = None,
        interpreted_type: str = "ORGAN",
    ) -> int:
        """Store contours as a new ROI with CLOSED_PLANAR contours in patient coordinates.

        :param str roi_name: Name of the new ROI.
        :param ContoursPerSlice contours: Contours with SMALL smoothing.
        :param Optional[Sequence[int]] color: RGB display color, defaults to a palette color.
        :param str interpreted_type: RTROIInterpretedType, defaults to "ORGAN"
        :raises InvalidInput: If the ROI exists, no reference image is set, or the contours are not SMALL smoothed.
        :return int: The ROI number.
        """
        self._require_reference()
        if roi_name in self.roi_dict:
            raise InvalidInput(f"ROI '{roi_name}' already exists")
        if contours.smoothing is not SmoothingLevel.SMALL:
            raise InvalidInput(
                f"Only SMALL smoothed contours can be stored, got {getattr(contours.smoothing, 'value', None)}"
            )

        roi_number = max([number for _, number in self.roi_dict.values()] or [0]) + 1
        color = list(color or DEFAULT_COLORS[(roi_number - 1) % len(DEFAULT_COLORS)])

        structure = Dataset()
        structure.ROINumber = roi_number
        structure.ReferencedFrameOfReferenceUID = self._frame_of_reference_uid()
        structure.ROIName = roi_name
        structure.ROIGenerationAlgorithm = "AUTOMATIC"

        contour_items = []
        for slice_idx, physical_polygons in ContourVolumeAdapter.to_physical(contours, self.transform).items():
            for physical in physical_polygons:
                item = Dataset()
                item.ContourGeometricType = CLOSED_PLANAR
                item.NumberOfContourPoints = len(physical)
                item.ContourData = [round(float(v), 4) for v in physical.ravel()]
                contour_items.append(item)

        roi_contour = Dataset()
        roi_contour.ROIDisplayColor = color
        roi_contour.ReferencedROINumber = roi_number
        roi_contour.ContourSequence = DicomSequence(contour_items)

        observation = Dataset()
        observation.ObservationNumber = roi_number
        observation.ReferencedROINumber = roi_number
        observation.RTROIInterpretedType = interpreted_type
        observation.ROIInterpreter = ""

        for keyword, item in (
            ("StructureSetROISequence", structure),
            ("ROIContourSequence", roi_contour),
            ("RTROIObservationsSequence", observation),
        ):
            if keyword not in self.rtstruct:
                setattr(self.rtstruct, keyword, DicomSequence())
            getattr(self.rtstruct, keyword).append(item)

        self._index_rois()
        self.logger.info(f"Added ROI '{roi_name}' (number {roi_number}) with {len(contour_items)} contour(s)")
        return roi_number

    def save_rtstruct(self, output_filepath: Union[str, Path]) -> None:
        """
        Save the RTSTRUCT to a file.

        :param Union[str, Path] output_filepath: Path to save the RTSTRUCT DICOM file.
        :raises IOError: If saving fails due to file system issues.
        """
        try:
            Path(output_filepath).parent.mkdir(parents=True, exist_ok=True)
            self.rtstruct.save_as(str(output_filepath), enforce_file_format=True)
            self.logger.info(f"Saved RTSTRUCT to {output_filepath}")
        except Exception as e:
            self.logger.error(f"Failed to save RTSTRUCT: {e}")
            raise IOError(f"Failed to save RTSTRUCT to '{output_filepath}': {e}")
