from __future__ import annotations
import math
import gymnasium as gym
from gymnasium import spaces
import numpy as np
from dataclasses import dataclass, fields
from typing import Dict, List, Optional

from racingline.utils.grid import OccupancyGrid
from racingline.utils.track import TrackMesh
from racingline.physics.physics_engine import VehicleSpec, VehicleState, step_dynamics, spawn_on_mesh
from racingline.rl.discretizer import CarPose, DiscreteState, DiscretizerConfig, discretize_state
from racingline.rl.reward import CheckpointState, RewardConfig, calculate_reward
from racingline.rl.q_agent import N_ACTIONS, action_to_controls


@dataclass
class EnvConfig:
    spawn_index: int = 5
    max_episode_ticks: int = 0     # 0 = episodes only end on a crash
    trace_every: int = 5           # lap trace sampling, in ticks
    lap_history: int = 4
    min_waypoints: int = 20

    def __post_init__(self):
        if self.trace_every < 1:
            raise ValueError("trace_every must be >= 1")
        if self.max_episode_ticks < 0:
            raise ValueError("max_episode_ticks must be >= 0")

    @staticmethod
    def from_config(cfg: Dict) -> "EnvConfig":
        known = {f.name for f in fields(EnvConfig)}
        return EnvConfig(**{k: int(v) for k, v in cfg.items() if k in known})


class RacingLineEnv(gym.Env):
    """
    One car on a meshed track. Observations are DiscreteState tuples, actions the
    five discrete driving actions. A crash terminates the episode; `reset` respawns
    the car while lap statistics (best lap, traces) persist for the whole session.
    """
    metadata = {"render_modes": ["human"], "render_fps": 60}

    def __init__(self, grid: OccupancyGrid, mesh: TrackMesh, veh_spec: VehicleSpec | None = None,
                 cfg: EnvConfig | None = None, discretizer: DiscretizerConfig | None = None,
                 reward: RewardConfig | None = None, render_mode: str | None = None):
        super().__init__()
        self.cfg = cfg or EnvConfig()
        self.grid = grid
        self.mesh = mesh.validate(self.cfg.min_waypoints)
        self.spec = veh_spec or VehicleSpec()
        self.disc_cfg = discretizer or DiscretizerConfig()
        self.reward_cfg = reward or RewardConfig()
        self.render_mode = render_mode

        n_segments = math.ceil(len(mesh) / self.disc_cfg.segment_divisor)
        half_lanes = len(self.disc_cfg.lane_thresholds) // 2
        self.action_space = spaces.Discrete(N_ACTIONS)
        self.observation_space = spaces.Tuple((
            spaces.Discrete(n_segments),
            spaces.Discrete(self.disc_cfg.lane_count, start=-half_lanes),
            spaces.Discrete(self.disc_cfg.speed_levels),
            spaces.Discrete(3, start=-1),
        ))

        self.state: Optional[VehicleState] = None
        self.checkpoint = CheckpointState()
        self.episode_ticks = 0

        # Session analytics
        self.laps = 0
        self.best_lap_ticks: Optional[int] = None
        self.best_lap_path = np.zeros((0, 2))
        self.lap_history: List[np.ndarray] = []   # most recent first
        self._current_path: List[np.ndarray] = []

    def pose(self) -> CarPose:
        s = self.state
        return CarPose(position=s.position, velocity=s.velocity, heading=s.heading,
                       speed=s.speed, crashed=s.crashed)

    def _get_obs(self) -> DiscreteState:
        return discretize_state(self.pose(), self.mesh, self.disc_cfg)

    def _get_info(self, lap_ticks: Optional[int] = None) -> Dict:
        return {
            "laps": self.checkpoint.laps,
            "checkpoint": self.checkpoint.checkpoint,
            "lap_ticks": self.checkpoint.lap_ticks,
            "lap_completed": lap_ticks is not None,
            "completed_lap_ticks": lap_ticks,
            "best_lap_ticks": self.best_lap_ticks,
            "crashed": bool(self.state.crashed),
        }

    def reset(self, seed: int | None = None, options: dict | None = None):
        super().reset(seed=seed)
        index = self.cfg.spawn_index
        if options and "spawn_index" in options:
            index = int(options["spawn_index"])
        self.state = spawn_on_mesh(self.mesh, index)
        self.checkpoint = CheckpointState()
        self.episode_ticks = 0
        self._current_path = []
        return self._get_obs(), self._get_info()

    def step(self, action: int):
        controls = action_to_controls(int(action))
        self.state = step_dynamics(self.spec, self.state, self.grid,
                                   controls.throttle, controls.brake, controls.steering)
        self.episode_ticks += 1

        self.checkpoint = self.checkpoint.tick()
        if self.checkpoint.lap_ticks % self.cfg.trace_every == 0:
            self._current_path.append(self.state.position)

        laps_before = self.checkpoint.laps
        reward, self.checkpoint = calculate_reward(self.pose(), self.grid, self.mesh,
                                                   self.best_lap_ticks, self.checkpoint, self.reward_cfg)

        completed = None
        if self.checkpoint.laps > laps_before:
            completed = self.checkpoint.last_lap_ticks
            self._complete_lap(completed)

        terminated = bool(self.state.crashed)
        truncated = (not terminated and self.cfg.max_episode_ticks > 0
                     and self.episode_ticks >= self.cfg.max_episode_ticks)
        return self._get_obs(), float(reward), terminated, truncated, self._get_info(completed)

    def _complete_lap(self, lap_ticks: int):
        path = np.array(self._current_path).reshape(-1, 2)
        self.laps += 1
        if self.best_lap_ticks is None or lap_ticks < self.best_lap_ticks:
            self.best_lap_ticks = lap_ticks
            self.best_lap_path = path.copy()
        self.lap_history.insert(0, path)
        del self.lap_history[self.cfg.lap_history:]
        self._current_path = []

    def render(self):
        if self.render_mode != "human" or self.state is None:
            return None
        s = self.state
        print(f"Pos: ({s.x:6.1f}, {s.y:6.1f}) | Speed: {s.speed:5.2f} | "
              f"Lap: {self.checkpoint.laps} | CP: {self.checkpoint.checkpoint} | "
              f"Lap ticks: {self.checkpoint.lap_ticks} | Best: {self.best_lap_ticks}")
        return None
