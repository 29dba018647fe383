"""
Centerline mesh generation from an occupancy grid.

The generator walks the track once with a ray-casting tracer (seed frame,
then arc walking), pulls every traced point towards the middle of the road
with an elastic band, and finally smooths positions and normals. The result
is the curvilinear (Frenet) frame every other component works in.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, fields
from typing import Dict, Optional, Tuple
import numpy as np

from racingline.utils.grid import CellKind, OccupancyGrid, read_track_image
from racingline.utils.map_processing import (
    circular_moving_average, normalize, normalize_rows, perpendicular, perpendiculars,
)
from racingline.utils.track import TrackMesh


@dataclass
class MeshConfig:
    # arc walker
    step_size: float = 6.0
    max_iterations: int = 6000
    min_loop_steps: int = 150
    closure_factor: float = 2.0          # closes within closure_factor * step_size of the start
    fan_half_angle: float = 2.0 * math.pi / 3.0
    fan_step: float = math.pi / 64.0
    ray_step: float = 2.0
    max_lookahead: float = 100.0         # short enough not to bridge hairpins
    straight_bias: float = 1.1
    visited_penalty: float = 0.1
    visit_radius: int = 2
    direction_blend: float = 0.6         # weight of the newly chosen heading
    # seed width probe
    probe_radius: float = 100.0
    min_width: float = 2.0
    default_width: float = 20.0
    # elastic band
    relaxation_passes: int = 10
    band_radius: float = 80.0
    band_damping: float = 0.5
    # smoothing; a wide position window flattens hairpins
    position_window: int = 3
    position_passes: int = 2
    normal_window: int = 5
    normal_passes: int = 2
    verbose: bool = True

    def __post_init__(self):
        if self.step_size <= 0 or self.ray_step <= 0 or self.fan_step <= 0:
            raise ValueError("step_size, ray_step and fan_step must be positive")
        if not 0.0 < self.direction_blend <= 1.0:
            raise ValueError("direction_blend must lie in (0, 1]")
        if self.position_window < 1 or self.normal_window < 1:
            raise ValueError("smoothing windows must be at least 1")

    @staticmethod
    def from_config(cfg: Dict) -> "MeshConfig":
        known = {f.name for f in fields(MeshConfig)}
        return MeshConfig(**{k: v for k, v in cfg.items() if k in known})


def first_wall_distances(grid: OccupancyGrid, origins: np.ndarray, directions: np.ndarray,
                         offsets: np.ndarray) -> np.ndarray:
    """
    March every ray origins[i] + directions[i] * offsets and return the first
    offset that lands in a wall, or NaN when none of the samples does.
    """
    pts = origins[:, None, :] + directions[:, None, :] * offsets[None, :, None]
    walls = grid.walls_at(np.floor(pts[..., 0]), np.floor(pts[..., 1]))
    found = walls.any(axis=1)
    return np.where(found, offsets[walls.argmax(axis=1)], np.nan)


def seed_frame(grid: OccupancyGrid, seed: Tuple[float, float],
               cfg: MeshConfig) -> Tuple[np.ndarray, np.ndarray, float]:
    """Initial travel direction, corrected center and track width around the seed."""
    seed = np.asarray(seed, dtype=float)

    direction = np.array([1.0, 0.0])
    marker = grid.marker_centroid(CellKind.DIRECTION)
    if marker is not None:
        to_marker = normalize(np.asarray(marker) - seed)
        if np.any(to_marker):
            direction = to_marker
        if cfg.verbose:
            print(f"Direction marker at ({marker[0]:.1f}, {marker[1]:.1f}) | "
                  f"heading ({direction[0]:.2f}, {direction[1]:.2f})")
    elif cfg.verbose:
        print(f"No direction marker, heading defaults to (1.0, 0.0) from ({seed[0]:.1f}, {seed[1]:.1f})")

    normal = perpendicular(direction)
    offsets = np.arange(0.0, cfg.probe_radius, 1.0)
    right, left = first_wall_distances(
        grid, np.stack([seed, seed]), np.stack([normal, -normal]), offsets)

    if np.isnan(right) or np.isnan(left) or right + left < cfg.min_width:
        print(f"Warning: no walls within {cfg.probe_radius:.0f} of seed "
              f"({seed[0]:.1f}, {seed[1]:.1f}), using default width {cfg.default_width}")
        width = cfg.default_width
        center = seed
    else:
        width = float(right + left)
        center = seed + normal * (right - left) / 2.0
    return center, direction, width


def walk_arc(grid: OccupancyGrid, center: np.ndarray, direction: np.ndarray, width: float,
             cfg: MeshConfig) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, bool]:
    """
    Trace the track from `center` by repeatedly stepping towards the deepest
    free direction of a ray fan. Returns positions, normals, widths, arc lengths
    and whether the walk came back to its start.
    """
    rel_angles = np.arange(-cfg.fan_half_angle, cfg.fan_half_angle + 1e-9, cfg.fan_step)
    bias = cfg.straight_bias - np.abs(rel_angles) / math.pi
    offsets = np.arange(cfg.ray_step, cfg.max_lookahead, cfg.ray_step)
    # samples this close to the current point fall inside its own visited footprint
    clearance = (cfg.visit_radius + 1) * math.sqrt(2.0)
    outside_footprint = offsets > clearance
    sample_idx = np.arange(len(offsets))

    visited = np.zeros((grid.height, grid.width), dtype=bool)
    pos = np.array(center, dtype=float)
    direction = np.array(direction, dtype=float)
    total = 0.0
    positions, normals, arcs = [], [], []
    closed = False

    for i in range(cfg.max_iterations):
        base = math.atan2(direction[1], direction[0])
        angles = base + rel_angles
        dirs = np.stack([np.cos(angles), np.sin(angles)], axis=1)

        pts = pos[None, None, :] + dirs[:, None, :] * offsets[None, :, None]
        cx = np.floor(pts[..., 0]).astype(np.int64)
        cy = np.floor(pts[..., 1]).astype(np.int64)
        walls = grid.walls_at(cx, cy)
        first_wall = np.where(walls.any(axis=1), walls.argmax(axis=1), len(offsets))
        depth = np.where(first_wall > 0, offsets[np.maximum(first_wall - 1, 0)], 0.0)

        # samples before the first wall are always inside the grid
        free = sample_idx[None, :] < first_wall[:, None]
        crossed = np.zeros_like(walls)
        crossed[free] = visited[cy[free], cx[free]]
        crossed &= outside_footprint[None, :]

        score = depth * bias * np.where(crossed.any(axis=1), cfg.visited_penalty, 1.0)
        heading = dirs[int(np.argmax(score))]

        prev = pos
        pos = pos + heading * cfg.step_size
        total += float(np.linalg.norm(pos - prev))

        blended = direction * (1.0 - cfg.direction_blend) + heading * cfg.direction_blend
        direction = blended if np.linalg.norm(blended) > 1e-9 else heading

        ix, iy = int(math.floor(pos[0])), int(math.floor(pos[1]))
        r = cfg.visit_radius
        visited[max(iy - r, 0):max(iy + r + 1, 0), max(ix - r, 0):max(ix + r + 1, 0)] = True

        positions.append(pos.copy())
        normals.append(normalize(perpendicular(direction)))
        arcs.append(total)

        if i > cfg.min_loop_steps and np.linalg.norm(pos - center) < cfg.closure_factor * cfg.step_size:
            closed = True
            break

    n = len(positions)
    if cfg.verbose:
        state = "closed" if closed else "hit the iteration cap"
        print(f"Arc walk {state} after {n} steps ({total:.1f} units)")
    return (np.array(positions).reshape(n, 2), np.array(normals).reshape(n, 2),
            np.full(n, float(width)), np.array(arcs, dtype=float), closed)


def relax_centerline(grid: OccupancyGrid, positions: np.ndarray, widths: np.ndarray,
                     cfg: MeshConfig) -> Tuple[np.ndarray, np.ndarray]:
    """Elastic band: nudge every point towards equal wall distance on both sides."""
    positions = positions.copy()
    widths = widths.copy()
    if len(positions) < 3:
        return positions, widths

    offsets = np.arange(1.0, cfg.band_radius, 1.0)
    for _ in range(cfg.relaxation_passes):
        tangents = np.roll(positions, -1, axis=0) - np.roll(positions, 1, axis=0)
        lengths = np.linalg.norm(tangents, axis=1)
        has_tangent = lengths > 0
        normals = normalize_rows(perpendiculars(tangents))

        right = first_wall_distances(grid, positions, normals, offsets)
        left = first_wall_distances(grid, positions, -normals, offsets)
        # points with a missing wall (gaps, sensor failure) stay where they are this pass
        ok = has_tangent & ~np.isnan(right) & ~np.isnan(left)

        correction = (right - left) / 2.0 * cfg.band_damping
        positions[ok] += normals[ok] * correction[ok, None]
        widths[ok] = (right + left)[ok]
    return positions, widths


def smooth_frame(positions: np.ndarray, normals: np.ndarray,
                 cfg: MeshConfig) -> Tuple[np.ndarray, np.ndarray]:
    """Moving average on positions, then normals from the result, then a wider average on normals."""
    if len(positions) < 3:
        return positions.copy(), normals.copy()

    smoothed = positions
    for _ in range(cfg.position_passes):
        smoothed = circular_moving_average(smoothed, cfg.position_window)

    tangents = np.roll(smoothed, -1, axis=0) - np.roll(smoothed, 1, axis=0)
    frame = normalize_rows(perpendiculars(tangents), fallback=normals)
    for _ in range(cfg.normal_passes):
        frame = normalize_rows(circular_moving_average(frame, cfg.normal_window), fallback=frame)
    return smoothed, frame


def generate_mesh(grid: OccupancyGrid, seed: Optional[Tuple[float, float]] = None,
                  config: Optional[MeshConfig] = None, name: str = "track") -> TrackMesh:
    """
    Build the closed centerline mesh of `grid`, starting from `seed`
    (defaults to the start marker or the first tarmac cell).

    A walk that never closes still yields its partial mesh with `closed=False`;
    call `TrackMesh.validate` before trusting it.
    """
    cfg = config or MeshConfig()
    if seed is None:
        seed = grid.find_seed()

    center, direction, width = seed_frame(grid, seed, cfg)
    positions, normals, widths, arcs, closed = walk_arc(grid, center, direction, width, cfg)
    positions, widths = relax_centerline(grid, positions, widths, cfg)
    positions, normals = smooth_frame(positions, normals, cfg)

    return TrackMesh.from_arrays(
        positions=positions,
        normals=normals,
        widths=widths,
        arc_lengths=arcs,
        total_length=len(positions) * cfg.step_size,
        closed=closed,
        name=name,
    )


def build_track(rgb: np.ndarray, config: Optional[MeshConfig] = None,
                name: str = "track") -> Tuple[OccupancyGrid, TrackMesh]:
    grid = OccupancyGrid.from_image(rgb)
    return grid, generate_mesh(grid, config=config, name=name)


def load_track_from_image(path: str, config: Optional[MeshConfig] = None) -> Tuple[OccupancyGrid, TrackMesh]:
    rgb = read_track_image(path)
    return build_track(rgb, config=config, name=path)
