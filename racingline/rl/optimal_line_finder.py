from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import numpy as np

from racingline.utils.grid import OccupancyGrid
from racingline.utils.track import TrackMesh
from racingline.utils.mesh_generator import MeshConfig, load_track_from_image
from racingline.utils.telemetry import TrainingTelemetry
from racingline.physics.physics_engine import VehicleSpec
from racingline.envs.rl_environment import EnvConfig, RacingLineEnv
from racingline.rl.discretizer import DiscretizerConfig
from racingline.rl.reward import RewardConfig
from racingline.rl.q_agent import AgentConfig, QLearningAgent


@dataclass
class TrainingResult:
    agent: QLearningAgent
    env: RacingLineEnv
    telemetry: TrainingTelemetry
    ticks: int
    best_lap_ticks: Optional[int]
    best_lap_path: np.ndarray
    lap_history: List[np.ndarray] = field(default_factory=list)


def load_config(path: Optional[str]) -> Dict:
    """Sectioned JSON config ({"mesh": {...}, "vehicle": {...}, ...}); empty when no path."""
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def record_tick(telemetry: TrainingTelemetry, tick: int, reward: float, terminated: bool,
                info: Dict, agent_info: Dict):
    """Log the tick first, so the lap it closes is credited with its reward (lap bonus included)."""
    telemetry.log_tick(tick, reward, terminated, agent_info)
    if info["lap_completed"]:
        telemetry.log_lap(tick, info["completed_lap_ticks"], agent_info)


def train_agent(env: RacingLineEnv, agent: QLearningAgent, ticks: int,
                telemetry: TrainingTelemetry | None = None, seed: int | None = None) -> TrainingResult:
    """
    Run `ticks` synchronous ticks: discretize, select, step, learn. A crash
    is a terminal transition (no bootstrap) followed by a respawn.
    """
    telemetry = telemetry or TrainingTelemetry(verbose=False)
    state, _ = env.reset(seed=seed)

    for tick in range(1, ticks + 1):
        action = agent.select_action(state)
        next_state, reward, terminated, truncated, info = env.step(action)

        # None is never a table key, so a terminal transition has no future value
        agent.learn(state, action, reward, None if terminated else next_state)

        record_tick(telemetry, tick, reward, terminated, info, agent.debug_info())

        if terminated or truncated:
            state, _ = env.reset()
        else:
            state = next_state

    return TrainingResult(
        agent=agent,
        env=env,
        telemetry=telemetry,
        ticks=ticks,
        best_lap_ticks=env.best_lap_ticks,
        best_lap_path=env.best_lap_path,
        lap_history=list(env.lap_history),
    )


def build_training(grid: OccupancyGrid, mesh: TrackMesh, cfg: Dict,
                   telemetry_dir: str = "telemetry", verbose: bool = True):
    env = RacingLineEnv(
        grid, mesh,
        veh_spec=VehicleSpec.from_config(cfg.get("vehicle", {})),
        cfg=EnvConfig.from_config(cfg.get("env", {})),
        discretizer=DiscretizerConfig.from_config(cfg.get("discretizer", {})),
        reward=RewardConfig.from_config(cfg.get("reward", {})),
    )
    agent = QLearningAgent(AgentConfig.from_config(cfg.get("agent", {})))
    telemetry = TrainingTelemetry(save_dir=telemetry_dir,
                                  print_interval=int(cfg.get("print_interval", 10_000)),
                                  verbose=verbose)
    return env, agent, telemetry


def train_and_export(image_path: str, out_path: str, ticks: int = 200_000,
                     config_path: str | None = None, telemetry_dir: str = "telemetry",
                     seed: int | None = None) -> TrainingResult:
    cfg = load_config(config_path)
    mesh_cfg = MeshConfig.from_config(cfg.get("mesh", {}))
    grid, mesh = load_track_from_image(image_path, mesh_cfg)

    print("=" * 60)
    print("RACING LINE - TABULAR Q-LEARNING")
    print("=" * 60)
    print(f"Track image: {image_path} ({grid.width}x{grid.height})")
    print(f"Waypoints: {len(mesh)} | Length: {mesh.total_length:.0f} | Closed: {mesh.closed}")
    print(f"Training ticks: {ticks:,}")

    env, agent, telemetry = build_training(grid, mesh, cfg, telemetry_dir,
                                             verbose=bool(cfg.get("verbose", True)))
    print(f"Actions: {env.action_space.n} | Segments: {env.observation_space.spaces[0].n}")
    print(f"alpha={agent.cfg.alpha} gamma={agent.cfg.gamma} "
          f"epsilon {agent.cfg.epsilon} -> {agent.cfg.epsilon_min} (x{agent.cfg.epsilon_decay}/tick)")
    print("=" * 60)

    result = train_agent(env, agent, ticks, telemetry, seed=seed)

    telemetry.print_summary()
    telemetry.save()
    try:
        telemetry.export_csv()
    except ImportError:
        print("   Note: Install pandas for CSV export: pip install pandas")
    print(f"   Telemetry data saved to ./{telemetry_dir}/ directory")

    if result.best_lap_ticks is None:
        print("Warning: no lap completed, best-lap trajectory not exported")
    else:
        np.save(out_path, result.best_lap_path)
        print(f"Best lap trajectory ({len(result.best_lap_path)} points) saved to {out_path}")
    return result
