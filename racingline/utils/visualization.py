from __future__ import annotations
from typing import Iterable, Optional
import numpy as np
import matplotlib.pyplot as plt

from racingline.utils.grid import OccupancyGrid
from racingline.utils.track import TrackMesh


# wall, tarmac, gravel, start, direction
_KIND_COLORS = np.array([
    [0.15, 0.15, 0.15],
    [0.92, 0.92, 0.92],
    [0.55, 0.75, 0.45],
    [0.90, 0.30, 0.30],
    [0.95, 0.85, 0.30],
])


def plot_grid(ax, grid: OccupancyGrid):
    ax.imshow(_KIND_COLORS[grid.kinds], origin="upper", interpolation="nearest")
    ax.set_aspect("equal", adjustable="box")


def plot_track(ax, center: np.ndarray, left: np.ndarray, right: np.ndarray):
    ax.plot(center[:,0], center[:,1], linewidth=1.5, label="Center")
    ax.plot(left[:,0], left[:,1], linestyle=":", linewidth=1.0, label="Left")
    ax.plot(right[:,0], right[:,1], linestyle=":", linewidth=1.0, label="Right")
    ax.set_aspect("equal", adjustable="box")
    ax.grid(True, alpha=0.3)


def plot_mesh(ax, mesh: TrackMesh, ribs: bool = True, rib_every: int = 1, smooth: bool = False):
    """Centerline, boundaries and (optionally) the normal ribs, each scaled to the local width."""
    center = mesh.interpolated_centerline if smooth else mesh.positions
    plot_track(ax, center, mesh.left_boundary, mesh.right_boundary)
    if ribs and len(mesh):
        left = mesh.left_boundary[::rib_every]
        right = mesh.right_boundary[::rib_every]
        segs = np.stack([left, right], axis=1)
        for seg in segs:
            ax.plot(seg[:, 0], seg[:, 1], color="tab:gray", linewidth=0.5, alpha=0.6)
        ax.scatter(mesh.positions[:1, 0], mesh.positions[:1, 1], marker="o", color="tab:red",
                   zorder=3, label="Start")
    if not ax.yaxis_inverted():
        ax.invert_yaxis()  # image coordinates


def plot_trajectories(ax, best: Optional[np.ndarray] = None, history: Iterable[np.ndarray] = ()):
    for i, trace in enumerate(history):
        if len(trace):
            ax.plot(trace[:,0], trace[:,1], linewidth=1.0, alpha=0.4, label=f"Lap -{i+1}")
    if best is not None and len(best):
        ax.plot(best[:,0], best[:,1], label="Best lap", linewidth=2.0)
    ax.legend(loc="best")


def plot_lap_times(ax, lap_ticks: Iterable[int]):
    lap_ticks = np.asarray(list(lap_ticks), dtype=float)
    if lap_ticks.size == 0:
        return
    laps = np.arange(1, lap_ticks.size + 1)
    ax.plot(laps, lap_ticks, marker=".", linewidth=1.0, label="Lap")
    ax.plot(laps, np.minimum.accumulate(lap_ticks), linewidth=2.0, label="Best so far")
    ax.set_xlabel("Lap")
    ax.set_ylabel("Ticks")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")

