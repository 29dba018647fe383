from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Dict
import numpy as np

from racingline.utils.grid import CellKind, OccupancyGrid
from racingline.utils.track import TrackMesh


# -------------------------
# Vehicle data
# -------------------------


@dataclass
class VehicleSpec:
    max_speed: float = 10.0       # pixels per tick
    acceleration: float = 0.2
    braking: float = 0.4
    drag: float = 0.05            # rolling/air resistance per tick
    turn_rate: float = 0.05       # rad per tick at full lock
    offtrack_drag: float = 0.2    # extra speed loss per tick on gravel
    grip: float = 0.9             # velocity blend towards heading, 1 = no drift
    gravel_grip: float = 0.5
    min_steer_speed: float = 0.1  # no steering while (almost) stopped
    # body size in pixels, used for wall collision
    width: float = 10.0
    length: float = 22.5

    @staticmethod
    def from_config(cfg: Dict) -> "VehicleSpec":
        known = {f.name for f in fields(VehicleSpec)}
        return VehicleSpec(**{k: float(v) for k, v in cfg.items() if k in known})


@dataclass
class VehicleState:
    x: float
    y: float
    heading: float
    speed: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    crashed: bool = False

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y])

    @property
    def velocity(self) -> np.ndarray:
        return np.array([self.vx, self.vy])


def get_corner_positions(spec: VehicleSpec, x: float, y: float, heading: float) -> np.ndarray:
    """
    Body corners in world coordinates, shape (4, 2): [FR, FL, RR, RL].
    """
    half_l = spec.length / 2.0
    half_w = spec.width / 2.0
    local = np.array([
        [half_l, half_w],
        [half_l, -half_w],
        [-half_l, half_w],
        [-half_l, -half_w],
    ])
    c, s = np.cos(heading), np.sin(heading)
    rot = np.array([[c, -s], [s, c]])
    return local @ rot.T + np.array([x, y])


# -------------------------
# Arcade dynamics (speed along heading + grip blend)
# -------------------------


def step_dynamics(spec: VehicleSpec, s: VehicleState, grid: OccupancyGrid,
                  throttle: float, brake: float, steer: float) -> VehicleState:
    """
    Advance one tick. throttle and brake in [0, 1], steer in [-1, 1] (negative = left).
    Touching a wall with any body corner marks the car crashed and freezes it.
    """
    if s.crashed:
        return s

    throttle = float(np.clip(throttle, 0.0, 1.0))
    brake = float(np.clip(brake, 0.0, 1.0))
    steer = float(np.clip(steer, -1.0, 1.0))

    speed = s.speed + throttle * spec.acceleration - brake * spec.braking
    if speed > 0:
        speed = max(speed - spec.drag, 0.0)
    elif speed < 0:
        speed = min(speed + spec.drag, 0.0)

    heading = s.heading
    if abs(speed) > spec.min_steer_speed:
        heading += steer * spec.turn_rate

    # position integrates last tick's velocity; velocity then chases the heading
    x = s.x + s.vx
    y = s.y + s.vy

    corners = get_corner_positions(spec, x, y, heading)
    kinds = grid.kinds_at(np.floor(corners[:, 0]), np.floor(corners[:, 1]))
    if np.any(kinds == CellKind.WALL):
        return replace(s, heading=heading, speed=0.0, crashed=True)

    grip = spec.grip
    if np.any(kinds == CellKind.GRAVEL):
        grip = spec.gravel_grip
        speed *= (1.0 - spec.offtrack_drag)

    speed = float(np.clip(speed, -spec.max_speed, spec.max_speed))
    target_vx = np.cos(heading) * speed
    target_vy = np.sin(heading) * speed
    vx = s.vx * (1.0 - grip) + target_vx * grip
    vy = s.vy * (1.0 - grip) + target_vy * grip
    return VehicleState(x=float(x), y=float(y), heading=float(heading), speed=speed,
                        vx=float(vx), vy=float(vy), crashed=False)


def spawn_on_mesh(mesh: TrackMesh, index: int = 5) -> VehicleState:
    """Stationary car on waypoint `index` (0 if out of range), facing the next waypoint."""
    if not mesh.waypoints:
        return VehicleState(x=0.0, y=0.0, heading=0.0)
    if index >= len(mesh.waypoints) or index < 0:
        index = 0
    here = mesh.positions[index]
    ahead = mesh.positions[(index + 1) % len(mesh.waypoints)]
    d = ahead - here
    return VehicleState(x=float(here[0]), y=float(here[1]), heading=float(np.arctan2(d[1], d[0])))
