from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Dict, Optional, Tuple
import numpy as np

from racingline.rl.discretizer import CarPose
from racingline.utils.grid import CellKind, OccupancyGrid
from racingline.utils.map_processing import speed_along_tangent
from racingline.utils.track import TrackMesh


@dataclass
class RewardConfig:
    crash_penalty: float = -100.0
    progress_weight: float = 2.0
    edge_threshold: float = 20.0
    edge_penalty: float = 2.0
    gravel_penalty: float = 5.0
    tick_penalty: float = 0.1
    idle_speed: float = 0.1
    idle_penalty: float = 1.0
    wrong_way_speed: float = -0.5
    wrong_way_penalty: float = 10.0
    # checkpoints, in waypoint indices
    checkpoint_skip: int = 10
    wrap_margin: int = 10
    milestone_bonus: float = 1.0
    lap_bonus: float = 100.0
    lap_time_weight: float = 0.5      # per tick faster than the best lap
    personal_best_bonus: float = 50.0

    def __post_init__(self):
        if self.checkpoint_skip < 1 or self.wrap_margin < 1:
            raise ValueError("checkpoint_skip and wrap_margin must be >= 1")

    @staticmethod
    def from_config(cfg: Dict) -> "RewardConfig":
        known = {f.name for f in fields(RewardConfig)}
        return RewardConfig(**{k: v for k, v in cfg.items() if k in known})


@dataclass(frozen=True)
class CheckpointState:
    """Race progress of one car. The reward function returns an updated copy."""
    checkpoint: int = -1       # last valid waypoint index, -1 before the first one
    laps: int = 0
    lap_ticks: int = 0         # ticks spent on the current lap
    last_lap_ticks: int = 0

    def tick(self) -> "CheckpointState":
        return replace(self, lap_ticks=self.lap_ticks + 1)


def checkpoint_windows(n_waypoints: int, cfg: RewardConfig) -> Tuple[int, int]:
    """
    Effective (skip bound, wrap margin) for a mesh of n waypoints.
    Clamped so that a forward step and a lap wrap can never describe the same jump,
    even on meshes shorter than the configured bounds.
    """
    skip = max(1, min(cfg.checkpoint_skip, n_waypoints // 2))
    margin = max(1, min(cfg.wrap_margin, n_waypoints // 4))
    return skip, margin


def is_lap_wrap(checkpoint: int, index: int, n_waypoints: int, cfg: RewardConfig) -> bool:
    _, margin = checkpoint_windows(n_waypoints, cfg)
    return checkpoint >= n_waypoints - margin and index < margin


def is_forward_progress(checkpoint: int, index: int, n_waypoints: int, cfg: RewardConfig) -> bool:
    if checkpoint < 0:
        return True
    skip, _ = checkpoint_windows(n_waypoints, cfg)
    return 0 < index - checkpoint < skip


def lap_reward(lap_ticks: int, best_lap_ticks: Optional[int], cfg: RewardConfig) -> float:
    reward = cfg.lap_bonus
    if not best_lap_ticks:
        # first lap on record is a personal best, with nothing to improve on
        return reward + cfg.personal_best_bonus
    if lap_ticks < best_lap_ticks:
        reward += (best_lap_ticks - lap_ticks) * cfg.lap_time_weight
        reward += cfg.personal_best_bonus
    return reward


def calculate_reward(pose: CarPose, grid: OccupancyGrid, mesh: TrackMesh,
                     best_lap_ticks: Optional[int], checkpoint: CheckpointState,
                     config: RewardConfig | None = None) -> Tuple[float, CheckpointState]:
    """
    Shaped reward for the tick that produced `pose`, and the car's updated race progress.
    `best_lap_ticks` is the fastest completed lap so far (None or 0 when there is none).
    """
    cfg = config or RewardConfig()
    if pose.crashed:
        return cfg.crash_penalty, checkpoint

    position = np.asarray(pose.position, dtype=float)
    wp, idx = mesh.closest_waypoint(position)

    speed_along_track = float(speed_along_tangent(pose.velocity[0], pose.velocity[1], wp.tangent))
    reward = speed_along_track * cfg.progress_weight

    lateral = float(np.dot(position - wp.position, wp.normal))
    if abs(lateral) > cfg.edge_threshold:
        reward -= cfg.edge_penalty

    if grid.kind_at(position[0], position[1]) == CellKind.GRAVEL:
        reward -= cfg.gravel_penalty

    reward -= cfg.tick_penalty
    if abs(pose.speed) < cfg.idle_speed:
        reward -= cfg.idle_penalty

    if speed_along_track < cfg.wrong_way_speed:
        reward -= cfg.wrong_way_penalty

    n = len(mesh.waypoints)
    if is_lap_wrap(checkpoint.checkpoint, idx, n, cfg):
        reward += lap_reward(checkpoint.lap_ticks, best_lap_ticks, cfg)
        reward += cfg.milestone_bonus
        checkpoint = CheckpointState(checkpoint=idx, laps=checkpoint.laps + 1,
                                     lap_ticks=0, last_lap_ticks=checkpoint.lap_ticks)
    elif is_forward_progress(checkpoint.checkpoint, idx, n, cfg):
        reward += cfg.milestone_bonus
        checkpoint = replace(checkpoint, checkpoint=idx)

    return reward, checkpoint
