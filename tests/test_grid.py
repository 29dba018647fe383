"""
Occupancy grid: colour classification, bounds and seed detection.
"""
import numpy as np
import pytest

from racingline.utils.grid import CellKind, OccupancyGrid, classify_color, classify_pixels
from racingline.utils.track import render_track_image
from shapely.geometry import box


def test_classify_color():
    assert classify_color(0, 0, 0) == CellKind.WALL
    assert classify_color(255, 255, 255) == CellKind.TARMAC
    assert classify_color(255, 0, 0) == CellKind.START
    assert classify_color(255, 255, 0) == CellKind.DIRECTION
    assert classify_color(0, 200, 0) == CellKind.GRAVEL
    # mid grey is neither wall nor marker
    assert classify_color(128, 128, 128) == CellKind.TARMAC


def test_vectorised_classification_matches_scalar():
    rng = np.random.default_rng(0)
    img = rng.integers(0, 256, size=(16, 16, 3), dtype=np.uint8)
    kinds = classify_pixels(img)
    for y in range(16):
        for x in range(16):
            r, g, b = (int(c) for c in img[y, x])
            assert kinds[y, x] == classify_color(r, g, b), f"pixel {(x, y)} = {(r, g, b)}"


def test_out_of_bounds_is_wall():
    grid = OccupancyGrid(np.full((10, 20), CellKind.TARMAC))
    assert grid.kind_at(5.5, 5.5) == CellKind.TARMAC
    for x, y in [(-0.1, 5), (20.0, 5), (5, -3), (5, 10.0), (1e6, 1e6)]:
        assert grid.is_wall(x, y), f"{(x, y)} should be a wall"
    assert grid.get(-1, 0).friction == 0.0

    kinds = grid.kinds_at(np.array([-1, 0, 19, 20]), np.array([0, 0, 9, 9]))
    assert list(kinds) == [CellKind.WALL, CellKind.TARMAC, CellKind.TARMAC, CellKind.WALL]


def test_grid_is_read_only():
    grid = OccupancyGrid(np.zeros((4, 4)))
    with pytest.raises(ValueError):
        grid.kinds[0, 0] = CellKind.TARMAC


def test_friction():
    kinds = np.array([[CellKind.TARMAC, CellKind.GRAVEL]])
    grid = OccupancyGrid(kinds)
    assert grid.friction_at(0.5, 0.5) == 1.0
    assert grid.friction_at(1.5, 0.5) == pytest.approx(0.4)


def test_seed_from_start_marker():
    img = render_track_image(box(10, 10, 90, 40), 100, 50, start=(60, 25), marker_size=4)
    grid = OccupancyGrid.from_image(img)
    cx, cy = grid.marker_centroid(CellKind.START)
    assert abs(cx - 59.5) < 1.0 and abs(cy - 24.5) < 1.0
    assert grid.find_seed() == (int(cx), int(cy))


def test_seed_falls_back_to_first_tarmac_column():
    img = render_track_image(box(10, 20, 90, 40), 100, 50)
    grid = OccupancyGrid.from_image(img)
    assert grid.marker_centroid(CellKind.START) is None
    assert grid.find_seed() == (10, 20)


def test_seed_without_tarmac_raises():
    grid = OccupancyGrid(np.zeros((5, 5)))
    with pytest.raises(ValueError):
        grid.find_seed()


def test_custom_classifier():
    img = np.zeros((3, 3, 3), dtype=np.uint8)
    img[1, 1] = (10, 10, 10)
    grid = OccupancyGrid.from_image(img, classify=lambda r, g, b: CellKind.GRAVEL if r else CellKind.TARMAC)
    assert grid.kind_at(1, 1) == CellKind.GRAVEL
    assert grid.kind_at(0, 0) == CellKind.TARMAC
