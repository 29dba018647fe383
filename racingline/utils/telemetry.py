"""
Training telemetry: one record per completed lap, plus periodic progress snapshots.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, asdict
from typing import List, Optional
from pathlib import Path


@dataclass
class LapRecord:
    """A completed lap."""
    lap: int
    tick: int              # global training tick at which the lap closed
    lap_ticks: int
    personal_best: bool
    lap_reward: float      # reward accumulated over the lap
    epsilon: float
    table_size: int


@dataclass
class ProgressSnapshot:
    """Agent state sampled every `print_interval` ticks."""
    tick: int
    laps: int
    crashes: int
    epsilon: float
    table_size: int
    mean_reward: float     # over the last interval
    best_lap_ticks: Optional[int]


class TrainingTelemetry:
    """Collects lap records and progress snapshots, prints them and saves them."""

    def __init__(self, save_dir: str = "telemetry", print_interval: int = 10_000, verbose: bool = True):
        self.save_dir = Path(save_dir)
        self.print_interval = print_interval
        self.verbose = verbose

        self.laps: List[LapRecord] = []
        self.snapshots: List[ProgressSnapshot] = []
        self.crashes = 0
        self.best_lap_ticks: Optional[int] = None

        self._interval_reward = 0.0
        self._interval_ticks = 0
        self._lap_reward = 0.0

        # Terminal formatting
        self.BOLD = '\033[1m'
        self.RESET = '\033[0m'
        self.GREEN = '\033[92m'
        self.RED = '\033[91m'
        self.YELLOW = '\033[93m'

    def log_tick(self, tick: int, reward: float, crashed: bool, agent_info: dict):
        self._interval_reward += reward
        self._interval_ticks += 1
        self._lap_reward += reward
        if crashed:
            self.crashes += 1
            self._lap_reward = 0.0

        if self.print_interval > 0 and tick > 0 and tick % self.print_interval == 0:
            snap = ProgressSnapshot(
                tick=tick,
                laps=len(self.laps),
                crashes=self.crashes,
                epsilon=float(agent_info.get("epsilon", 0.0)),
                table_size=int(agent_info.get("table_size", 0)),
                mean_reward=self._interval_reward / max(self._interval_ticks, 1),
                best_lap_ticks=self.best_lap_ticks,
            )
            self.snapshots.append(snap)
            self._interval_reward = 0.0
            self._interval_ticks = 0
            if self.verbose:
                self._print_progress(snap)

    def log_lap(self, tick: int, lap_ticks: int, agent_info: dict) -> LapRecord:
        personal_best = self.best_lap_ticks is None or lap_ticks < self.best_lap_ticks
        if personal_best:
            self.best_lap_ticks = lap_ticks
        record = LapRecord(
            lap=len(self.laps) + 1,
            tick=tick,
            lap_ticks=lap_ticks,
            personal_best=personal_best,
            lap_reward=self._lap_reward,
            epsilon=float(agent_info.get("epsilon", 0.0)),
            table_size=int(agent_info.get("table_size", 0)),
        )
        self.laps.append(record)
        self._lap_reward = 0.0
        if self.verbose:
            self._print_lap(record)
        return record

    def _print_progress(self, snap: ProgressSnapshot):
        best = f"{snap.best_lap_ticks}" if snap.best_lap_ticks else "-"
        print(f"Tick {snap.tick:8d} | Laps: {snap.laps:4d} | Crashes: {snap.crashes:5d} | "
              f"eps: {snap.epsilon:.3f} | States: {snap.table_size:6d} | "
              f"Reward/tick: {snap.mean_reward:+7.2f} | Best lap: {best}")

    def _print_lap(self, record: LapRecord):
        if record.personal_best:
            print(f"{self.YELLOW}{self.BOLD}NEW BEST LAP{self.RESET} #{record.lap}: "
                  f"{record.lap_ticks} ticks (tick {record.tick})")
        else:
            print(f"Lap #{record.lap}: {record.lap_ticks} ticks "
                  f"(best {self.best_lap_ticks}, tick {record.tick})")

    def print_summary(self):
        print(f"\n{'='*60}")
        print(f"{self.BOLD}TRAINING SUMMARY{self.RESET}")
        print(f"{'='*60}")
        print(f"Laps completed: {len(self.laps)}")
        print(f"Crashes:        {self.crashes}")
        if self.best_lap_ticks is not None:
            print(f"{self.GREEN}Best lap:       {self.best_lap_ticks} ticks{self.RESET}")
        else:
            print(f"{self.RED}No lap completed{self.RESET}")
        print(f"{'='*60}\n")

    def save(self):
        """Save lap records and snapshots as JSON."""
        self.save_dir.mkdir(parents=True, exist_ok=True)
        with open(self.save_dir / "laps.json", 'w') as f:
            json.dump([asdict(r) for r in self.laps], f, indent=2)
        with open(self.save_dir / "progress.json", 'w') as f:
            json.dump([asdict(s) for s in self.snapshots], f, indent=2)

    def export_csv(self):
        """Export lap records to CSV for external analysis."""
        import pandas as pd

        if not self.laps:
            return None

        self.save_dir.mkdir(parents=True, exist_ok=True)
        df = pd.DataFrame([asdict(r) for r in self.laps])
        csv_file = self.save_dir / "laps.csv"
        df.to_csv(csv_file, index=False)
        if self.verbose:
            print(f"Telemetry data exported to: {csv_file}")
        return csv_file
