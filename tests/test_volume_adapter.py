"""Tests for slice-parallel extraction, verification and reconstruction."""

import logging
import os

import numpy as np
import pytest
from scipy.ndimage import binary_fill_holes, label

from rtcontour.config import ContourSettings
from rtcontour.contours.filler import fill_polygons
from rtcontour.contours.transform import VolumeTransform
from rtcontour.contours.types import ContourPolygon, ContoursPerSlice, SmoothingLevel
from rtcontour.contours.volume_adapter import ContourVolumeAdapter, extract_slice_task
from rtcontour.errors import DegenerateContour, InvalidInput, ReconciliationFailure


@pytest.fixture
def adapter(settings):
    return ContourVolumeAdapter(settings)


class TestExtractContours:
    def test_none_level_round_trip_is_exact(self, adapter, disc_volume):
        contours = adapter.extract_contours(disc_volume, level=SmoothingLevel.NONE)
        mask = ContourVolumeAdapter.contours_to_mask(contours, disc_volume.shape)

        for z in range(disc_volume.shape[0]):
            np.testing.assert_array_equal(mask[z], binary_fill_holes(disc_volume[z]).astype(np.uint8))

    def test_small_level_passes_verification(self, adapter, disc_volume):
        contours = adapter.extract_contours(disc_volume, level="small")

        assert contours.smoothing is SmoothingLevel.SMALL
        assert contours.slices_with_contours() == [1, 2, 3]
        assert len(contours[3]) == 2
        assert contours.min_max_slices() == (1, 3)

    def test_empty_slices_are_filtered(self, adapter, disc_volume):
        contours = adapter.extract_contours(disc_volume)
        assert list(contours) == [1, 2, 3]

    def test_empty_slices_are_kept_on_request(self, disc_volume):
        adapter = ContourVolumeAdapter(ContourSettings(max_workers=2, filter_empty_slices=False))
        contours = adapter.extract_contours(disc_volume)

        assert list(contours) == [0, 1, 2, 3, 4]
        assert contours[0] == []
        assert contours.slices_with_contours() == [1, 2, 3]

    def test_region_area_is_recorded(self, adapter, disc_volume):
        contours = adapter.extract_contours(disc_volume, level="none")
        assert contours[2][0].region_area_pixels == np.count_nonzero(binary_fill_holes(disc_volume[2]))

    def test_other_labels(self, adapter, multi_label_volume):
        contours = adapter.extract_contours(multi_label_volume, foreground_id=2)
        assert contours.slices_with_contours() == [1, 2, 3]
        assert all(len(polygons) == 1 for polygons in contours.values())

    def test_large_is_rejected(self, adapter, disc_volume):
        with pytest.raises(InvalidInput):
            adapter.extract_contours(disc_volume, level=SmoothingLevel.LARGE)

    def test_equal_ids_are_rejected(self, adapter, disc_volume):
        with pytest.raises(InvalidInput):
            adapter.extract_contours(disc_volume, foreground_id=0, background_id=0)

    def test_volume_must_be_3d(self, adapter, disc_volume):
        with pytest.raises(InvalidInput):
            adapter.extract_contours(disc_volume[0])
        with pytest.raises(InvalidInput):
            adapter.extract_contours(None)

    def test_default_level_comes_from_settings(self, disc_volume):
        adapter = ContourVolumeAdapter(ContourSettings(smoothing="none", max_workers=1))
        assert adapter.extract_contours(disc_volume).smoothing is SmoothingLevel.NONE


class TestParallelErrors:
    @pytest.fixture
    def in_process(self):
        # patched functions are only seen by slices run in this process
        return ContourVolumeAdapter(ContourSettings(max_workers=1, show_progress=False))

    def test_lowest_failing_slice_is_raised(self, in_process, disc_volume, monkeypatch, caplog):
        volume = disc_volume.copy()
        volume[2, 0, 0] = 1
        volume[4, 0, 0] = 1

        def failing_trace(label_slice, foreground_id=1, background_id=0):
            if label_slice[0, 0] == foreground_id:
                raise DegenerateContour("walk did not close")
            return []

        monkeypatch.setattr("rtcontour.contours.volume_adapter.trace_polygons", failing_trace)
        with caplog.at_level(logging.ERROR):
            with pytest.raises(DegenerateContour) as error:
                in_process.extract_contours(volume, verify=False)

        assert error.value.slice_index == 2
        assert str(error.value).startswith("[slice 2]")
        assert "slice 4 failed" in caplog.text

    def test_failing_structure_does_not_stop_the_others(self, in_process, multi_label_volume, monkeypatch):
        from rtcontour.contours import volume_adapter

        original = volume_adapter.trace_polygons

        def trace(label_slice, foreground_id=1, background_id=0):
            if foreground_id == 2:
                raise DegenerateContour("broken structure")
            return original(label_slice, foreground_id, background_id)

        monkeypatch.setattr(volume_adapter, "trace_polygons", trace)
        converted, failed = in_process.extract_structures(multi_label_volume, {"body": 1, "box": 2})

        assert list(converted) == ["body"]
        assert list(failed) == ["box"]
        assert isinstance(failed["box"], DegenerateContour)

    def test_worker_failure_is_reported_with_its_slice(self, adapter, disc_volume, caplog):
        good = (disc_volume[1], 1, 0, SmoothingLevel.NONE, 0.5, 1)
        not_2d = (disc_volume, 1, 0, SmoothingLevel.NONE, 0.5, 1)
        with caplog.at_level(logging.ERROR):
            with pytest.raises(InvalidInput) as error:
                adapter._run_per_slice(extract_slice_task, {0: good, 3: not_2d, 5: not_2d}, "Extracting")

        assert error.value.slice_index == 3
        assert "slice 5 failed" in caplog.text


class TestWorkerPool:
    def test_process_pool_matches_in_process_run(self, disc_volume):
        pooled = ContourVolumeAdapter(ContourSettings(max_workers=3, show_progress=False))
        serial = ContourVolumeAdapter(ContourSettings(max_workers=1, show_progress=False))

        expected = serial.extract_contours(disc_volume, level="small")
        contours = pooled.extract_contours(disc_volume, level="small")

        assert list(contours) == list(expected)
        for z in expected:
            assert len(contours[z]) == len(expected[z])
            for polygon, reference in zip(contours[z], expected[z]):
                np.testing.assert_array_equal(polygon.points, reference.points)
                assert polygon.region_area_pixels == reference.region_area_pixels

    def test_mismatches_come_back_from_workers(self, disc_volume):
        pooled = ContourVolumeAdapter(
            ContourSettings(max_absolute_difference=0, max_relative_difference=0.0, max_workers=2, show_progress=False)
        )
        with pytest.raises(ReconciliationFailure) as error:
            pooled.verify_contours(disc_volume, ContoursPerSlice(), label="body")

        assert [m.slice_index for m in error.value.mismatches] == [1, 2, 3]
        assert error.value.mismatches[0].true_count == 81

    @pytest.mark.parametrize("max_workers, expected", [(1, 1), (4, 4), (None, os.cpu_count() or 1)])
    def test_worker_count(self, max_workers, expected):
        assert ContourVolumeAdapter(ContourSettings(max_workers=max_workers)).worker_count == expected


class TestReconciliation:
    @pytest.mark.parametrize(
        "true_count, rendered_count, acceptable",
        [
            (100, 100, True),
            (100, 85, True),  # absolute above, relative at the limit
            (100, 84, False),
            (5, 0, True),  # absolute within the limit
            (20, 9, False),
            (0, 20, True),  # no relative difference without foreground
        ],
    )
    def test_both_thresholds_must_be_exceeded(self, true_count, rendered_count, acceptable):
        adapter = ContourVolumeAdapter(ContourSettings(max_absolute_difference=10, max_relative_difference=0.15))
        assert adapter.is_rendering_acceptable(true_count, rendered_count) is acceptable

    def test_disabled_thresholds(self):
        relative_only = ContourVolumeAdapter(ContourSettings(max_absolute_difference=None, max_relative_difference=0.1))
        assert not relative_only.is_rendering_acceptable(10, 12)
        assert relative_only.is_rendering_acceptable(100, 105)

        absolute_only = ContourVolumeAdapter(ContourSettings(max_absolute_difference=0, max_relative_difference=None))
        assert absolute_only.is_rendering_acceptable(100, 50)

    def test_check_rendering_raises(self, adapter):
        with pytest.raises(ReconciliationFailure) as error:
            adapter.check_rendering(100, 40, slice_index=7, label="lung")

        assert error.value.slice_index == 7
        assert error.value.label == "lung"
        assert error.value.mismatches[0].absolute_difference == 60
        assert "Structure 'lung'" in str(error.value)

    def test_missing_contours_fail_on_every_slice(self, adapter, disc_volume):
        with pytest.raises(ReconciliationFailure) as error:
            adapter.verify_contours(disc_volume, ContoursPerSlice(), label="body")

        assert [m.slice_index for m in error.value.mismatches] == [1, 2, 3]
        assert error.value.label == "body"

    def test_extraction_fails_with_strict_thresholds(self, disc_volume):
        adapter = ContourVolumeAdapter(
            ContourSettings(max_absolute_difference=0, max_relative_difference=0.0, max_workers=2)
        )
        # the hole on slice 2 is closed by its contour
        with pytest.raises(ReconciliationFailure) as error:
            adapter.extract_contours(disc_volume, level="none")
        assert [m.slice_index for m in error.value.mismatches] == [2]
        assert error.value.mismatches[0].absolute_difference == 4


class TestReconstruction:
    def test_contours_to_mask(self):
        square = ContourPolygon(np.array([[0.5, 0.5], [2.5, 0.5], [2.5, 2.5], [0.5, 2.5]]))
        mask = ContourVolumeAdapter.contours_to_mask({1: [square]}, (3, 4, 4), value=3)

        assert mask.dtype == np.uint8
        assert np.count_nonzero(mask) == 4
        np.testing.assert_array_equal(mask[1, 1:3, 1:3], 3)

    def test_slices_outside_the_volume_are_skipped(self, caplog):
        square = ContourPolygon(np.array([[0.5, 0.5], [2.5, 0.5], [2.5, 2.5], [0.5, 2.5]]))
        with caplog.at_level(logging.WARNING):
            mask = ContourVolumeAdapter.contours_to_mask({5: [square], -1: [square]}, (3, 4, 4))

        assert not mask.any()
        assert "slice 5" in caplog.text

    def test_shape_must_be_3d(self):
        with pytest.raises(InvalidInput):
            ContourVolumeAdapter.contours_to_mask({}, (4, 4))


class TestPhysicalCoordinates:
    def test_round_trip(self, adapter, disc_volume):
        transform = VolumeTransform.from_geometry((10.0, -5.0, 2.0), (0.5, 0.8, 2.5))
        contours = adapter.extract_contours(disc_volume)

        physical = ContourVolumeAdapter.to_physical(contours, transform)
        np.testing.assert_allclose(physical[2][0][:, 2], 2.0 + 2 * 2.5)

        polygons = [polygon for z in physical for polygon in physical[z]]
        restored = ContourVolumeAdapter.from_physical(polygons, transform)

        assert list(restored) == list(contours)
        for z in contours:
            for original, back in zip(contours[z], restored[z]):
                np.testing.assert_allclose(back.points, original.points, atol=1e-9)

    def test_non_planar_contour(self):
        transform = VolumeTransform.from_geometry((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))
        polygon = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
        with pytest.raises(InvalidInput):
            ContourVolumeAdapter.from_physical([polygon], transform)


class TestCorruptedMask:
    @pytest.fixture
    def corrupted(self, disc_volume):
        volume = disc_volume[1:2].copy()
        contours = ContourVolumeAdapter(ContourSettings(max_workers=1)).extract_contours(volume, level="none")
        # drop 16 of the 81 foreground pixels, about 20%
        flat = volume.reshape(-1)
        flat[np.flatnonzero(flat)[:16]] = 0
        return volume, contours

    def test_fails_when_both_thresholds_are_exceeded(self, corrupted):
        volume, contours = corrupted
        adapter = ContourVolumeAdapter(ContourSettings(max_absolute_difference=10, max_relative_difference=0.15))
        with pytest.raises(ReconciliationFailure) as error:
            adapter.verify_contours(volume, contours)
        assert error.value.mismatches[0].true_count == 65
        assert error.value.mismatches[0].rendered_count == 81

    def test_passes_within_the_absolute_threshold(self, corrupted):
        volume, contours = corrupted
        ContourVolumeAdapter(ContourSettings(max_absolute_difference=20, max_relative_difference=0.15)).verify_contours(
            volume, contours
        )

    def test_passes_within_the_relative_threshold(self, corrupted):
        volume, contours = corrupted
        ContourVolumeAdapter(ContourSettings(max_absolute_difference=10, max_relative_difference=0.3)).verify_contours(
            volume, contours
        )


def filled_components(label_slice):
    """Union of every 8-connected foreground component with its holes filled."""
    components, count = label(label_slice, structure=np.ones((3, 3), dtype=bool))
    expected = np.zeros(label_slice.shape, dtype=bool)
    for component in range(1, count + 1):
        expected |= binary_fill_holes(components == component)
    return expected.astype(np.uint8)


class TestExactRoundTrip:
    @pytest.fixture
    def in_process(self):
        return ContourVolumeAdapter(ContourSettings(max_workers=1, show_progress=False))

    @pytest.mark.parametrize("seed", range(12))
    @pytest.mark.parametrize("density", [0.3, 0.5, 0.7])
    def test_random_masks(self, in_process, seed, density):
        rng = np.random.default_rng(seed)
        label_slice = (rng.random((14, 17)) < density).astype(np.uint8)

        polygons = in_process.extract_slice(label_slice, level=SmoothingLevel.NONE)
        canvas = np.zeros_like(label_slice)
        fill_polygons(polygons, canvas, 1)

        np.testing.assert_array_equal(canvas, filled_components(label_slice))

    def test_spur_diagonal_contact_and_island_in_hole(self, in_process):
        label_slice = np.zeros((11, 12), dtype=np.uint8)
        label_slice[1:10, 1:10] = 1
        label_slice[3:8, 3:8] = 0
        label_slice[5, 5] = 1  # island inside the hole
        label_slice[5, 10] = 1  # one pixel spur
        label_slice[0, 0] = 1  # touches the ring only diagonally
        label_slice[10, 11] = 1

        polygons = in_process.extract_slice(label_slice, level="none")
        canvas = np.zeros_like(label_slice)
        fill_polygons(polygons, canvas, 1)

        np.testing.assert_array_equal(canvas, filled_components(label_slice))
        assert np.count_nonzero(canvas) == 81 + 1 + 1 + 1
