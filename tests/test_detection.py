import numpy as np
import pytest

from conftest import PIXEL_SIZE, make_slide_image, sort_points
from ringgrid.core import BoundingBox, CrossNotFoundError, EmptyGridDetectionError
from ringgrid.core.pattern import find_central_cross, find_grid_points, rings_per_side, search_box
from ringgrid.core.primitives import DetectionScratch, components, threshold


def test_threshold_constant_image_is_empty() -> None:
    mask = threshold(np.full((20, 20), 7.0), "otsu")
    assert not mask.any()


def test_threshold_rejects_unknown_method() -> None:
    with pytest.raises(ValueError):
        threshold(np.zeros((5, 5)), "huang")


def test_components_area_cutoff_and_weighted_centroid() -> None:
    mask = np.zeros((20, 20), dtype=bool)
    mask[2:5, 2:5] = True
    mask[10, 10] = True
    intensity = np.ones((20, 20))
    intensity[4, 4] = 10.0

    regions = components(mask, min_area=2, intensity_image=intensity)

    assert len(regions) == 1
    assert regions[0].area == 9
    assert regions[0].bbox == BoundingBox(2, 2, 3, 3)
    assert regions[0].centroid[0] > 3.0
    assert regions[0].centroid[1] > 3.0


def test_find_central_cross(slide_image, pattern) -> None:
    scratch = DetectionScratch()
    cross = find_central_cross(slide_image, PIXEL_SIZE, pattern, scratch)

    assert cross == BoundingBox(132, 132, 37, 37)
    assert cross.center == (150.0, 150.0)
    assert scratch.cross_candidates


def test_cross_not_found_on_flat_image(pattern) -> None:
    with pytest.raises(CrossNotFoundError):
        find_central_cross(np.full((100, 100), 50.0), PIXEL_SIZE, pattern)


def test_cross_not_found_outside_central_window(pattern) -> None:
    image = np.zeros((300, 300))
    image[5:15, 5:40] = 100.0
    small_field = pattern.with_overrides(fov=40.0)

    with pytest.raises(CrossNotFoundError):
        find_central_cross(image, PIXEL_SIZE, small_field)


def test_rings_per_side_partial_and_full(pattern) -> None:
    assert rings_per_side(300, 300, PIXEL_SIZE, pattern) == (4, 2.5)
    assert rings_per_side(2000, 2000, PIXEL_SIZE, pattern) == (19, 1.5)


def test_search_box_grows_cross() -> None:
    box = search_box(BoundingBox(132, 132, 37, 37), 4, 2.5, PIXEL_SIZE, 15.0)
    assert box == BoundingBox(7, 7, 287, 287)


def test_find_grid_points(slide_image, pattern, expected_rings) -> None:
    cross = BoundingBox(132, 132, 37, 37)
    scratch = DetectionScratch()

    points = find_grid_points(slide_image, cross, PIXEL_SIZE, pattern, scratch)

    assert points.shape == (80, 2)
    np.testing.assert_allclose(sort_points(points), sort_points(expected_rings), atol=1e-6)
    assert scratch.rings_per_side == 4
    assert scratch.search_box == BoundingBox(7, 7, 287, 287)


def test_find_grid_points_with_local_maxima(slide_image, pattern, expected_rings) -> None:
    cross = BoundingBox(132, 132, 37, 37)
    maxima = pattern.with_overrides(detection="maxima")

    points = find_grid_points(slide_image, cross, PIXEL_SIZE, maxima)

    assert points.shape == (80, 2)
    np.testing.assert_allclose(sort_points(points), sort_points(expected_rings), atol=1e-6)


def test_find_grid_points_max_radius(slide_image, pattern) -> None:
    cross = BoundingBox(132, 132, 37, 37)
    limited = pattern.with_overrides(max_radius=65.0)

    points = find_grid_points(slide_image, cross, PIXEL_SIZE, limited)

    distances = np.hypot(points[:, 0] - 150, points[:, 1] - 150) * PIXEL_SIZE
    assert 0 < len(points) < 80
    assert np.all(distances <= 65.0)


def test_empty_grid_raises(pattern) -> None:
    image = make_slide_image(with_rings=False)
    cross = find_central_cross(image, PIXEL_SIZE, pattern)

    with pytest.raises(EmptyGridDetectionError):
        find_grid_points(image, cross, PIXEL_SIZE, pattern)
