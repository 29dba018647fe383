"""
TrackMesh queries: nearest waypoint, Frenet coordinates, validation, JSON.
"""
import numpy as np
import pytest

from racingline.utils.grid import CellKind, OccupancyGrid
from racingline.utils.track import (
    DegenerateMeshError, TrackMesh, load_mesh_json, make_oval_track_image, oval_start_markers, save_mesh_json,
)
from conftest import straight_mesh


def random_mesh(n: int, seed: int = 0) -> TrackMesh:
    rng = np.random.default_rng(seed)
    positions = rng.uniform(0, 500, size=(n, 2))
    angles = rng.uniform(-np.pi, np.pi, size=n)
    normals = np.stack([np.cos(angles), np.sin(angles)], axis=1)
    return TrackMesh.from_arrays(positions, normals, np.full(n, 30.0), np.arange(n) * 6.0,
                                 total_length=n * 6.0)


def test_closest_waypoint_is_optimal():
    mesh = random_mesh(300)
    rng = np.random.default_rng(1)
    for q in rng.uniform(-50, 550, size=(200, 2)):
        wp, idx = mesh.closest_waypoint(q)
        dists = np.linalg.norm(mesh.positions - q, axis=1)
        assert dists[idx] == pytest.approx(dists.min())
        assert wp is mesh.waypoints[idx]


def test_closest_waypoint_tie_goes_to_lowest_index():
    positions = np.array([[0.0, 0.0], [10.0, 0.0], [20.0, 0.0]])
    normals = np.tile([0.0, 1.0], (3, 1))
    mesh = TrackMesh.from_arrays(positions, normals, np.ones(3), np.arange(3) * 10.0, 30.0)
    _, idx = mesh.closest_waypoint(np.array([5.0, 3.0]))
    assert idx == 0


def test_empty_mesh_query_raises():
    mesh = TrackMesh(waypoints=[], total_length=0.0)
    with pytest.raises(DegenerateMeshError):
        mesh.closest_waypoint(np.zeros(2))


def test_frenet_coordinates():
    mesh = straight_mesh()
    s, d = mesh.world_to_frenet(np.array([51.0, 42.0]))
    assert s == pytest.approx(50.0)
    assert d == pytest.approx(-8.0)
    # tangent is the normal rotated back: travel along +x
    assert np.allclose(mesh.waypoints[0].tangent, [1.0, 0.0])


def test_boundaries():
    mesh = straight_mesh()
    assert np.allclose(mesh.left_boundary[:, 1], 30.0)
    assert np.allclose(mesh.right_boundary[:, 1], 70.0)


def test_validate():
    assert straight_mesh(40).validate() is not None
    with pytest.raises(DegenerateMeshError):
        straight_mesh(5).validate()
    open_mesh = straight_mesh(40)
    open_mesh.closed = False
    with pytest.raises(ValueError):
        open_mesh.validate()


def circle_mesh(n: int, laps: int = 1) -> TrackMesh:
    t = np.linspace(0, 2 * np.pi * laps, n, endpoint=False)
    positions = np.stack([100 + 50 * np.cos(t), 100 + 50 * np.sin(t)], axis=1)
    normals = np.stack([np.cos(t), np.sin(t)], axis=1)
    return TrackMesh.from_arrays(positions, normals, np.full(n, 20.0), np.arange(n) * 8.0, n * 8.0)


def test_validate_rejects_a_loop_walked_twice():
    single = circle_mesh(40)
    assert single.overlap_fraction() == 0.0
    single.validate()

    doubled = circle_mesh(80, laps=2)
    assert doubled.overlap_fraction() == pytest.approx(1.0)
    with pytest.raises(DegenerateMeshError, match="more than once"):
        doubled.validate()


def test_oval_start_markers():
    m = oval_start_markers(300.0, 200.0, size=(800, 600))
    assert m["start"] == pytest.approx((700.0, 300.0))
    assert m["direction"] == pytest.approx((700.0, 330.0))

    rotated = oval_start_markers(200.0, 150.0, rotate_deg=90.0, size=(800, 600))
    assert rotated["start"] == pytest.approx((400.0, 500.0))
    assert rotated["direction"] == pytest.approx((370.0, 500.0))

    # both markers land on the road of the rendered oval
    img = make_oval_track_image(a=200.0, b=150.0, width=60.0, rotate_deg=90.0, size=(800, 600), **rotated)
    grid = OccupancyGrid.from_image(img)
    start = grid.marker_centroid(CellKind.START)
    direction = grid.marker_centroid(CellKind.DIRECTION)
    assert start is not None and direction is not None
    assert np.allclose(start, rotated["start"], atol=1.5)
    assert np.allclose(direction, rotated["direction"], atol=1.5)


def test_json_round_trip(tmp_path):
    mesh = random_mesh(30)
    path = tmp_path / "mesh.json"
    save_mesh_json(mesh, str(path))
    loaded = load_mesh_json(str(path))
    assert len(loaded) == 30
    assert np.allclose(loaded.positions, mesh.positions)
    assert np.allclose(loaded.normals, mesh.normals)
    assert loaded.total_length == mesh.total_length


def test_interpolated_centerline():
    t = np.linspace(0, 2 * np.pi, 60, endpoint=False)
    positions = np.stack([100 + 50 * np.cos(t), 100 + 50 * np.sin(t)], axis=1)
    normals = np.stack([np.cos(t), np.sin(t)], axis=1)
    mesh = TrackMesh.from_arrays(positions, normals, np.full(60, 20.0), t * 50, 100 * np.pi)
    smooth = mesh.interpolated_centerline
    assert smooth.shape == (mesh.interpolation_resolution, 2)
    radii = np.linalg.norm(smooth - 100.0, axis=1)
    assert np.all(np.abs(radii - 50.0) < 0.5)
