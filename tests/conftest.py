import numpy as np
import pytest

from racingline.utils.grid import CellKind, OccupancyGrid
from racingline.utils.mesh_generator import MeshConfig, generate_mesh
from racingline.utils.track import TrackMesh, make_rectangle_ring_image


def straight_mesh(n: int = 40, spacing: float = 5.0, y: float = 50.0) -> TrackMesh:
    """Waypoints along +x at height y, normals pointing down (+y)."""
    xs = np.arange(n) * spacing
    positions = np.stack([xs, np.full(n, y)], axis=1)
    normals = np.tile([0.0, 1.0], (n, 1))
    return TrackMesh.from_arrays(positions, normals, np.full(n, 40.0), xs,
                                 total_length=n * spacing, closed=True, name="straight")


def open_grid(width: int = 220, height: int = 100, gravel=None) -> OccupancyGrid:
    """All tarmac; `gravel` is an (x0, y0, x1, y1) box."""
    kinds = np.full((height, width), CellKind.TARMAC, dtype=np.int8)
    if gravel is not None:
        x0, y0, x1, y1 = gravel
        kinds[y0:y1, x0:x1] = CellKind.GRAVEL
    return OccupancyGrid(kinds)


@pytest.fixture
def small_track_config():
    return MeshConfig(min_loop_steps=20, verbose=False)


@pytest.fixture(scope="module")
def rectangle_track():
    img = make_rectangle_ring_image(200, 140, track_width=20, margin=20)
    grid = OccupancyGrid.from_image(img)
    mesh = generate_mesh(grid, seed=(120, 30), config=MeshConfig(min_loop_steps=20, verbose=False),
                         name="rectangle")
    return grid, mesh
