"""Tests for boundary tracing."""

import numpy as np
import pytest

from rtcontour.contours.tracer import trace_polygons
from rtcontour.errors import InvalidInput


def grid_with(pixels, shape=(5, 5)):
    grid = np.zeros(shape, dtype=np.uint8)
    for x, y in pixels:
        grid[y, x] = 1
    return grid


class TestTracePolygons:
    def test_single_pixel(self):
        polygons = trace_polygons(grid_with([(2, 2)]))

        assert len(polygons) == 1
        np.testing.assert_array_equal(polygons[0].points, [[2, 2]])
        assert polygons[0].enclosed_pixels == 1
        assert polygons[0].start == (2, 2)

    def test_square_is_traced_clockwise(self):
        polygons = trace_polygons(grid_with([(1, 1), (2, 1), (1, 2), (2, 2)]))

        assert len(polygons) == 1
        np.testing.assert_array_equal(polygons[0].points, [[1, 1], [2, 1], [2, 2], [1, 2]])
        assert polygons[0].voxel_counts.foreground == 4
        assert polygons[0].voxel_counts.other == 0

    def test_two_pixel_spur(self):
        polygons = trace_polygons(grid_with([(1, 1), (2, 1)]))
        np.testing.assert_array_equal(polygons[0].points, [[1, 1], [2, 1]])

    def test_v_shape_passes_through_start_pixel(self):
        polygons = trace_polygons(grid_with([(1, 0), (2, 1), (0, 1)], shape=(3, 3)))

        assert len(polygons) == 1
        np.testing.assert_array_equal(polygons[0].points, [[1, 0], [2, 1], [1, 0], [0, 1]])
        assert polygons[0].enclosed_pixels == 3

    def test_ring_encloses_its_hole(self):
        label_slice = np.zeros((5, 5), dtype=np.uint8)
        label_slice[1:4, 1:4] = 1
        label_slice[2, 2] = 0
        polygons = trace_polygons(label_slice)

        assert len(polygons) == 1
        assert polygons[0].enclosed_pixels == 9
        assert polygons[0].voxel_counts.foreground == 8
        assert polygons[0].voxel_counts.other == 1

    def test_island_in_hole_belongs_to_outer_polygon(self):
        label_slice = np.zeros((7, 7), dtype=np.uint8)
        label_slice[1:6, 1:6] = 1
        label_slice[2:5, 2:5] = 0
        label_slice[3, 3] = 1
        polygons = trace_polygons(label_slice)

        assert len(polygons) == 1
        assert polygons[0].voxel_counts.foreground == 17
        assert polygons[0].voxel_counts.other == 8

    def test_regions_in_raster_order(self):
        label_slice = np.zeros((6, 6), dtype=np.uint8)
        label_slice[4:6, 0:2] = 1
        label_slice[0:2, 3:5] = 1
        polygons = trace_polygons(label_slice)

        assert [p.start for p in polygons] == [(3, 0), (0, 4)]
        assert all(p.enclosed_pixels == 4 for p in polygons)

    def test_other_labels_are_ignored(self):
        label_slice = np.zeros((5, 5), dtype=np.uint8)
        label_slice[1:3, 1:3] = 2
        label_slice[4, 4] = 1

        assert len(trace_polygons(label_slice, foreground_id=2)) == 1
        assert trace_polygons(label_slice, foreground_id=2)[0].enclosed_pixels == 4
        assert trace_polygons(label_slice, foreground_id=3) == []

    def test_every_region_fills_back_to_the_mask(self, disc_volume):
        for label_slice in disc_volume:
            polygons = trace_polygons(label_slice)
            foreground = sum(p.voxel_counts.foreground for p in polygons)
            assert foreground == np.count_nonzero(label_slice)


class TestInvalidInput:
    def test_none(self):
        with pytest.raises(InvalidInput):
            trace_polygons(None)

    def test_not_2d(self):
        with pytest.raises(InvalidInput):
            trace_polygons(np.zeros((2, 3, 3), dtype=np.uint8))

    def test_equal_ids(self):
        with pytest.raises(InvalidInput):
            trace_polygons(np.zeros((3, 3), dtype=np.uint8), foreground_id=1, background_id=1)


class TestExamples:
    def test_full_grid_with_background_centre(self):
        label_slice = np.ones((3, 3), dtype=np.uint8)
        label_slice[1, 1] = 0
        polygons = trace_polygons(label_slice)

        assert len(polygons) == 1
        assert polygons[0].enclosed_pixels == 9
