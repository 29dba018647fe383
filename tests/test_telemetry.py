"""
Lap telemetry recording and export.
"""
import json

import pandas as pd

from racingline.utils.telemetry import TrainingTelemetry
from racingline.rl.optimal_line_finder import record_tick


INFO = {"epsilon": 0.5, "table_size": 42}


def test_lap_records_track_personal_best(tmp_path):
    telemetry = TrainingTelemetry(save_dir=str(tmp_path), verbose=False)
    telemetry.log_tick(1, 3.0, False, INFO)
    first = telemetry.log_lap(100, 900, INFO)
    slower = telemetry.log_lap(1100, 1000, INFO)
    faster = telemetry.log_lap(1900, 800, INFO)

    assert first.personal_best and not slower.personal_best and faster.personal_best
    assert [r.lap for r in telemetry.laps] == [1, 2, 3]
    assert telemetry.best_lap_ticks == 800
    assert first.lap_reward == 3.0
    assert slower.lap_reward == 0.0


def test_crash_resets_lap_reward():
    telemetry = TrainingTelemetry(verbose=False)
    telemetry.log_tick(1, 5.0, False, INFO)
    telemetry.log_tick(2, -100.0, True, INFO)
    telemetry.log_tick(3, 2.0, False, INFO)
    assert telemetry.crashes == 1
    assert telemetry.log_lap(3, 3, INFO).lap_reward == 2.0


def test_progress_snapshots():
    telemetry = TrainingTelemetry(print_interval=10, verbose=False)
    for tick in range(1, 31):
        telemetry.log_tick(tick, 1.0, False, INFO)
    assert [s.tick for s in telemetry.snapshots] == [10, 20, 30]
    assert telemetry.snapshots[0].mean_reward == 1.0
    assert telemetry.snapshots[0].table_size == 42


def test_save_and_export(tmp_path):
    telemetry = TrainingTelemetry(save_dir=str(tmp_path / "run"), verbose=False)
    assert telemetry.export_csv() is None
    telemetry.log_lap(10, 500, INFO)
    telemetry.log_lap(20, 450, INFO)
    telemetry.save()

    with open(tmp_path / "run" / "laps.json") as f:
        laps = json.load(f)
    assert [l["lap_ticks"] for l in laps] == [500, 450]

    csv_file = telemetry.export_csv()
    df = pd.read_csv(csv_file)
    assert list(df["lap_ticks"]) == [500, 450]
    assert bool(df["personal_best"].all())


def test_lap_bonus_counts_towards_the_lap_it_closes(tmp_path):
    telemetry = TrainingTelemetry(save_dir=str(tmp_path), verbose=False)
    running = {"lap_completed": False}
    record_tick(telemetry, 1, 1.0, False, running, INFO)
    record_tick(telemetry, 2, 150.0, False, {"lap_completed": True, "completed_lap_ticks": 2}, INFO)
    assert telemetry.laps[0].lap_reward == 151.0

    record_tick(telemetry, 3, 1.0, False, running, INFO)
    record_tick(telemetry, 4, 150.0, False, {"lap_completed": True, "completed_lap_ticks": 2}, INFO)
    assert telemetry.laps[1].lap_reward == 151.0
