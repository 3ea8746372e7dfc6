"""Shared fixtures for the contour conversion tests."""

import numpy as np
import pytest
import SimpleITK as sitk

from rtcontour.config import ContourSettings


def disc(shape, center, radius):
    yy, xx = np.mgrid[: shape[0], : shape[1]]
    return (xx - center[0]) ** 2 + (yy - center[1]) ** 2 <= radius**2


@pytest.fixture
def settings():
    """Settings with a small worker pool and no progress bar."""
    return ContourSettings(max_workers=2, show_progress=False)


@pytest.fixture
def disc_volume():
    """A (5, 24, 24) uint8 label volume.

    Slice 0 and 4 are empty, slice 1 holds a disc, slice 2 a disc with a
    2x2 hole and slice 3 two separate small discs.
    """
    volume = np.zeros((5, 24, 24), dtype=np.uint8)
    volume[1][disc((24, 24), (11, 11), 5)] = 1
    volume[2][disc((24, 24), (11, 11), 7)] = 1
    volume[2, 10:12, 10:12] = 0
    volume[3][disc((24, 24), (6, 6), 3)] = 1
    volume[3][disc((24, 24), (17, 17), 3)] = 1
    return volume


@pytest.fixture
def multi_label_volume(disc_volume):
    """The disc volume with a second structure (label 2) in the corner."""
    volume = disc_volume.copy()
    volume[1:4, 19:23, 1:5] = 2
    return volume


@pytest.fixture
def reference_image(disc_volume):
    """A SimpleITK image matching ``disc_volume`` with non-trivial geometry."""
    image = sitk.GetImageFromArray(np.zeros_like(disc_volume))
    image.SetSpacing((0.8, 0.8, 2.5))
    image.SetOrigin((-10.0, 20.0, 5.0))
    return image
