"""
Tabular epsilon-greedy Q-learning over discretized track states.

The table is a dict keyed by DiscreteState; each row holds one value per
action. Rows are created lazily by `learn`, so the table only ever covers
states the agent has actually visited.
"""
from __future__ import annotations
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Dict, Hashable, NamedTuple, Optional
import numpy as np


class Action(IntEnum):
    COAST = 0
    THROTTLE = 1
    BRAKE = 2
    STEER_LEFT = 3
    STEER_RIGHT = 4


class Controls(NamedTuple):
    throttle: float
    brake: float
    steering: float   # -1 full left, +1 full right


_CONTROLS = {
    Action.COAST: Controls(0.0, 0.0, 0.0),
    Action.THROTTLE: Controls(1.0, 0.0, 0.0),
    Action.BRAKE: Controls(0.0, 1.0, 0.0),
    Action.STEER_LEFT: Controls(0.0, 0.0, -1.0),
    Action.STEER_RIGHT: Controls(0.0, 0.0, 1.0),
}

N_ACTIONS = len(Action)


def action_to_controls(action: int) -> Controls:
    return _CONTROLS[Action(action)]


@dataclass
class AgentConfig:
    alpha: float = 0.01
    gamma: float = 0.9998
    epsilon: float = 1.0
    epsilon_decay: float = 0.9995   # applied on every select_action call
    epsilon_min: float = 0.01
    seed: Optional[int] = None

    def __post_init__(self):
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError(f"alpha must lie in (0, 1], got {self.alpha}")
        if not 0.0 <= self.gamma <= 1.0:
            raise ValueError(f"gamma must lie in [0, 1], got {self.gamma}")
        if not 0.0 < self.epsilon_decay <= 1.0:
            raise ValueError(f"epsilon_decay must lie in (0, 1], got {self.epsilon_decay}")
        if not 0.0 <= self.epsilon_min <= self.epsilon <= 1.0:
            raise ValueError("expected 0 <= epsilon_min <= epsilon <= 1")

    @staticmethod
    def from_config(cfg: Dict) -> "AgentConfig":
        known = {f.name for f in fields(AgentConfig)}
        return AgentConfig(**{k: v for k, v in cfg.items() if k in known})


class QLearningAgent:
    def __init__(self, config: AgentConfig | None = None, rng: np.random.Generator | None = None):
        self.cfg = config or AgentConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.cfg.seed)
        self._epsilon = self.cfg.epsilon
        self._table: Dict[Hashable, np.ndarray] = {}
        self.updates = 0
        self.explorations = 0

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @property
    def table_size(self) -> int:
        return len(self._table)

    def q_values(self, state: Hashable) -> np.ndarray:
        """Action values of `state`; a zero row (not stored) for unseen states."""
        row = self._table.get(state)
        if row is None:
            return np.zeros(N_ACTIONS)
        return row.copy()

    def _greedy(self, row: np.ndarray) -> int:
        # scan from a random offset so ties do not always favour the lowest action
        offset = int(self.rng.integers(N_ACTIONS))
        order = (np.arange(N_ACTIONS) + offset) % N_ACTIONS
        return int(order[np.argmax(row[order])])

    def select_action(self, state: Hashable) -> Action:
        self._epsilon = max(self.cfg.epsilon_min, self._epsilon * self.cfg.epsilon_decay)

        row = self._table.get(state)
        if row is None or self.rng.random() < self._epsilon:
            self.explorations += 1
            return Action(int(self.rng.integers(N_ACTIONS)))
        return Action(self._greedy(row))

    def learn(self, state: Hashable, action: int, reward: float, next_state: Hashable) -> float:
        """One-step Bellman update. Returns the TD error."""
        row = self._table.get(state)
        if row is None:
            row = np.zeros(N_ACTIONS)
            self._table[state] = row

        next_row = self._table.get(next_state)
        future = float(next_row.max()) if next_row is not None else 0.0

        a = int(action)
        td_error = reward + self.cfg.gamma * future - row[a]
        row[a] += self.cfg.alpha * td_error
        self.updates += 1
        return float(td_error)

    def greedy_action(self, state: Hashable) -> Action:
        """Best known action without exploring or decaying epsilon."""
        return Action(self._greedy(self.q_values(state)))

    def debug_info(self) -> Dict[str, float]:
        return {
            "table_size": self.table_size,
            "epsilon": self._epsilon,
            "updates": self.updates,
            "explorations": self.explorations,
        }
