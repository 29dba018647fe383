"""
Continuous car pose -> discrete Markov state, expressed in the mesh's Frenet frame.

Bucket conventions (a value sitting exactly on a threshold):
  lane     upper bin   (d < t is strict)          lanes -2..2
  speed    lower bin   (speed > t is strict)      levels 0..3
  heading  aligned bin (|rel| > t is strict)      -1, 0, 1
"""
from __future__ import annotations
import math
from dataclasses import dataclass, fields
from typing import Dict, NamedTuple, Tuple
import numpy as np

from racingline.utils.map_processing import tangent_from_normal, wrap_angle
from racingline.utils.track import TrackMesh


@dataclass
class CarPose:
    """What the physics collaborator exposes each tick."""
    position: np.ndarray
    velocity: np.ndarray
    heading: float
    speed: float
    crashed: bool = False


class DiscreteState(NamedTuple):
    segment_index: int
    lane_index: int
    speed_level: int
    heading_rel_bucket: int


@dataclass
class DiscretizerConfig:
    # tuned for tracks roughly 50 px wide; rescale with the image resolution
    lane_thresholds: Tuple[float, ...] = (-15.0, -5.0, 5.0, 15.0)
    speed_thresholds: Tuple[float, ...] = (0.5, 4.0, 8.0)
    heading_threshold: float = math.pi / 6.0
    segment_divisor: int = 5

    def __post_init__(self):
        self.lane_thresholds = tuple(float(t) for t in self.lane_thresholds)
        self.speed_thresholds = tuple(float(t) for t in self.speed_thresholds)
        if len(self.lane_thresholds) % 2 != 0:
            raise ValueError("lane_thresholds must be symmetric around the center lane (even count)")
        for name in ("lane_thresholds", "speed_thresholds"):
            ts = getattr(self, name)
            if list(ts) != sorted(ts):
                raise ValueError(f"{name} must be sorted ascending")
        if self.segment_divisor < 1:
            raise ValueError("segment_divisor must be >= 1")
        if self.heading_threshold <= 0:
            raise ValueError("heading_threshold must be positive")

    @property
    def lane_count(self) -> int:
        return len(self.lane_thresholds) + 1

    @property
    def speed_levels(self) -> int:
        return len(self.speed_thresholds) + 1

    @staticmethod
    def from_config(cfg: Dict) -> "DiscretizerConfig":
        known = {f.name for f in fields(DiscretizerConfig)}
        return DiscretizerConfig(**{k: v for k, v in cfg.items() if k in known})


def lane_bucket(d: float, cfg: DiscretizerConfig) -> int:
    return int(np.searchsorted(cfg.lane_thresholds, d, side="right")) - len(cfg.lane_thresholds) // 2


def speed_bucket(speed: float, cfg: DiscretizerConfig) -> int:
    return int(np.searchsorted(cfg.speed_thresholds, speed, side="left"))


def heading_bucket(rel_heading: float, cfg: DiscretizerConfig) -> int:
    if rel_heading < -cfg.heading_threshold:
        return -1
    if rel_heading > cfg.heading_threshold:
        return 1
    return 0


def relative_heading(heading: float, normal: np.ndarray) -> float:
    """Car heading minus track heading, wrapped into (-pi, pi]."""
    tangent = tangent_from_normal(normal)
    track_heading = math.atan2(tangent[1], tangent[0])
    return wrap_angle(heading - track_heading)


def discretize_state(pose: CarPose, mesh: TrackMesh,
                     config: DiscretizerConfig | None = None) -> DiscreteState:
    cfg = config or DiscretizerConfig()
    wp, idx = mesh.closest_waypoint(pose.position)
    d = float(np.dot(np.asarray(pose.position, dtype=float) - wp.position, wp.normal))

    return DiscreteState(
        segment_index=idx // cfg.segment_divisor,
        lane_index=lane_bucket(d, cfg),
        speed_level=speed_bucket(pose.speed, cfg),
        heading_rel_bucket=heading_bucket(relative_heading(pose.heading, wp.normal), cfg),
    )
