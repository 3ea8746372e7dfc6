"""Affine mapping between voxel indices and physical (patient) coordinates."""

from typing import Optional, Sequence

import numpy as np
import SimpleITK as sitk

from rtcontour.errors import InvalidInput


class VolumeTransform:
    """A 4x4 homogeneous transform from data index (x, y, z) to physical millimetres.

    :param np.ndarray matrix: The data-to-physical matrix.
    :raises InvalidInput: If the matrix is not 4x4, not affine or not invertible.
    """

    def __init__(self, matrix: np.ndarray):
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise InvalidInput(f"Expected a 4x4 matrix, got shape {matrix.shape}")
        if not np.allclose(matrix[3], (0, 0, 0, 1)):
            raise InvalidInput("The last row of an affine transform must be (0, 0, 0, 1)")
        try:
            inverse = np.linalg.inv(matrix)
        except np.linalg.LinAlgError:
            raise InvalidInput("The transform is not invertible")

        self.data_to_physical_matrix = matrix
        self.physical_to_data_matrix = inverse

    @classmethod
    def from_geometry(
        cls, origin: Sequence[float], spacing: Sequence[float], direction: Optional[Sequence[float]] = None
    ) -> "VolumeTransform":
        """Build the transform from image geometry.

        :param Sequence[float] origin: Physical position of voxel (0, 0, 0).
        :param Sequence[float] spacing: Voxel size along x, y and z.
        :param Optional[Sequence[float]] direction: Row-major 3x3 direction cosines, defaults to identity.
        """
        if len(origin) != 3 or len(spacing) != 3:
            raise InvalidInput(f"Origin and spacing need 3 components, got {len(origin)} and {len(spacing)}")
        if any(s <= 0 for s in spacing):
            raise InvalidInput(f"Spacing must be positive, got {tuple(spacing)}")

        direction = np.eye(3) if direction is None else np.asarray(direction, dtype=np.float64).reshape(3, 3)
        matrix = np.eye(4)
        matrix[:3, :3] = direction @ np.diag(np.asarray(spacing, dtype=np.float64))
        matrix[:3, 3] = origin
        return cls(matrix)

    @classmethod
    def from_image(cls, image: sitk.Image) -> "VolumeTransform":
        """Take the geometry of a 3D SimpleITK image."""
        if image.GetDimension() != 3:
            raise InvalidInput(f"Expected a 3D image, got {image.GetDimension()} dimensions")
        return cls.from_geometry(image.GetOrigin(), image.GetSpacing(), image.GetDirection())

    def data_to_physical(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 3) index coordinates to physical coordinates."""
        return self._apply(self.data_to_physical_matrix, points)

    def physical_to_data(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 3) physical coordinates to (fractional) index coordinates."""
        return self._apply(self.physical_to_data_matrix, points)

    def slice_to_physical(self, points_2d: np.ndarray, slice_index: int) -> np.ndarray:
        """Lift (N, 2) in-slice points on ``slice_index`` to physical (N, 3) points."""
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        z = np.full((len(points_2d), 1), float(slice_index))
        return self.data_to_physical(np.hstack([points_2d, z]))

    def slice_to_z(self, slice_index: int) -> float:
        """Physical z of the in-slice origin of ``slice_index``."""
        return float(self.data_to_physical(np.array([[0.0, 0.0, float(slice_index)]]))[0, 2])

    def z_to_slice(self, point: Sequence[float]) -> int:
        """Nearest slice index of a physical (x, y, z) point."""
        return int(np.rint(self.physical_to_data(np.asarray(point, dtype=np.float64).reshape(1, 3))[0, 2]))

    @staticmethod
    def _apply(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 3:
            raise InvalidInput(f"Expected points of shape (N, 3), got {points.shape}")
        return points @ matrix[:3, :3].T + matrix[:3, 3]
