from __future__ import annotations
import argparse
import os
import matplotlib.pyplot as plt

from racingline.utils.track import make_oval_track_image, oval_start_markers, save_mesh_json
from racingline.utils.mesh_generator import MeshConfig, load_track_from_image
from racingline.utils.visualization import plot_grid, plot_mesh, plot_trajectories, plot_lap_times
from racingline.rl.optimal_line_finder import load_config, train_and_export


def ensure_sample_track(path: str):
    if not os.path.exists(path):
        img = make_oval_track_image(a=300.0, b=200.0, width=60.0, size=(800, 600),
                                    **oval_start_markers(300.0, 200.0, size=(800, 600)))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        plt.imsave(path, img)
        print(f"Sample track saved to {path}")


def mode_gen_track(args):
    size = (args.size_x, args.size_y)
    img = make_oval_track_image(a=args.a, b=args.b, width=args.width, rotate_deg=args.rotate, size=size,
                                **oval_start_markers(args.a, args.b, args.rotate, size))
    os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
    plt.imsave(args.output, img)
    print(f"Track image saved to {args.output}")


def mode_mesh(args):
    ensure_sample_track(args.image)
    cfg = load_config(args.config)
    grid, mesh = load_track_from_image(args.image, MeshConfig.from_config(cfg.get("mesh", {})))
    mesh.validate()
    if args.output:
        save_mesh_json(mesh, args.output)
        print(f"Mesh ({len(mesh)} waypoints) saved to {args.output}")

    if not args.no_plot:
        fig, ax = plt.subplots(figsize=(10,6))
        plot_grid(ax, grid)
        plot_mesh(ax, mesh, rib_every=args.rib_every)
        ax.set_title(f"Track mesh: {len(mesh)} waypoints, length {mesh.total_length:.0f}")
        plt.show()


def mode_train(args):
    ensure_sample_track(args.image)
    result = train_and_export(args.image, args.output, ticks=args.ticks, config_path=args.config,
                              telemetry_dir=args.telemetry, seed=args.seed)
    if args.no_plot:
        return

    env = result.env
    fig, (ax, ax_laps) = plt.subplots(1, 2, figsize=(14,6))
    plot_grid(ax, env.grid)
    plot_mesh(ax, env.mesh, ribs=False)
    plot_trajectories(ax, best=result.best_lap_path if result.best_lap_ticks else None,
                      history=result.lap_history)
    ax.set_title(f"Best lap: {result.best_lap_ticks} ticks")
    plot_lap_times(ax_laps, [r.lap_ticks for r in result.telemetry.laps])
    ax_laps.set_title("Lap times")
    plt.show()


def main():
    p = argparse.ArgumentParser()
    sub = p.add_subparsers(dest="mode", required=True)


    p_gen = sub.add_parser("gen-track")
    p_gen.add_argument("--output", default="data/tracks/sample_track.png")
    p_gen.add_argument("--a", type=float, default=300.0)
    p_gen.add_argument("--b", type=float, default=200.0)
    p_gen.add_argument("--width", type=float, default=60.0)
    p_gen.add_argument("--rotate", type=float, default=0.0)
    p_gen.add_argument("--size_x", type=int, default=800)
    p_gen.add_argument("--size_y", type=int, default=600)


    p_mesh = sub.add_parser("mesh")
    p_mesh.add_argument("--image", default="data/tracks/sample_track.png")
    p_mesh.add_argument("--config", default="configs/training.example.json")
    p_mesh.add_argument("--output", default="data/tracks/sample_mesh.json")
    p_mesh.add_argument("--rib_every", type=int, default=2)
    p_mesh.add_argument("--no_plot", action="store_true")


    p_train = sub.add_parser("train")
    p_train.add_argument("--image", default="data/tracks/sample_track.png")
    p_train.add_argument("--config", default="configs/training.example.json")
    p_train.add_argument("--output", default="data/best_lap.npy")
    p_train.add_argument("--telemetry", default="telemetry")
    p_train.add_argument("--ticks", type=int, default=200_000)
    p_train.add_argument("--seed", type=int, default=None)
    p_train.add_argument("--no_plot", action="store_true")


    args = p.parse_args()
    if args.mode == "gen-track":
        mode_gen_track(args)
    elif args.mode == "mesh":
        mode_mesh(args)
    elif args.mode == "train":
        mode_train(args)




if __name__ == "__main__":
    main()
