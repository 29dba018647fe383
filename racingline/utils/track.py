from __future__ import annotations
import json
import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import shapely
from shapely.geometry import LineString, Point, Polygon, box
from shapely.affinity import rotate, translate
from scipy.interpolate import splprep, splev


class DegenerateMeshError(ValueError):
    """The mesh cannot serve as a track frame (empty, too short, not closed or doubled)."""


@dataclass(frozen=True, eq=False)
class Waypoint:
    id: int
    position: np.ndarray  # (2,) world/pixel coordinates
    normal: np.ndarray    # (2,) unit, right-hand side of travel
    width: float
    arc_length: float     # cumulative distance from the first waypoint

    @property
    def tangent(self) -> np.ndarray:
        return np.array([self.normal[1], -self.normal[0]])


@dataclass
class TrackMesh:
    waypoints: List[Waypoint]
    total_length: float
    closed: bool = True
    name: str = "track"
    interpolation_resolution: int = 2000
    # stacked arrays for vectorised queries
    _positions: np.ndarray = field(default=None, repr=False)
    _normals: np.ndarray = field(default=None, repr=False)
    _widths: np.ndarray = field(default=None, repr=False)
    _interpolated_centerline: np.ndarray = field(default=None, repr=False)

    @staticmethod
    def from_arrays(positions: np.ndarray, normals: np.ndarray, widths: np.ndarray,
                    arc_lengths: np.ndarray, total_length: float, closed: bool = True,
                    name: str = "track") -> "TrackMesh":
        waypoints = [
            Waypoint(id=i, position=np.array(p, dtype=float), normal=np.array(n, dtype=float),
                     width=float(w), arc_length=float(s))
            for i, (p, n, w, s) in enumerate(zip(positions, normals, widths, arc_lengths))
        ]
        return TrackMesh(waypoints=waypoints, total_length=float(total_length), closed=closed, name=name)

    def __len__(self) -> int:
        return len(self.waypoints)

    def _stack(self):
        if self.waypoints:
            self._positions = np.array([w.position for w in self.waypoints], dtype=float)
            self._normals = np.array([w.normal for w in self.waypoints], dtype=float)
            self._widths = np.array([w.width for w in self.waypoints], dtype=float)
        else:
            self._positions = np.zeros((0, 2))
            self._normals = np.zeros((0, 2))
            self._widths = np.zeros(0)

    @property
    def positions(self) -> np.ndarray:
        if self._positions is None:
            self._stack()
        return self._positions

    @property
    def normals(self) -> np.ndarray:
        if self._normals is None:
            self._stack()
        return self._normals

    @property
    def widths(self) -> np.ndarray:
        if self._widths is None:
            self._stack()
        return self._widths

    @property
    def left_boundary(self) -> np.ndarray:
        return self.positions - self.normals * self.widths[:, None] / 2.0

    @property
    def right_boundary(self) -> np.ndarray:
        return self.positions + self.normals * self.widths[:, None] / 2.0

    def validate(self, min_waypoints: int = 20, max_overlap: float = 0.5) -> "TrackMesh":
        """Raise DegenerateMeshError unless the mesh is a usable closed loop."""
        if len(self.waypoints) < min_waypoints:
            raise DegenerateMeshError(
                f"mesh has {len(self.waypoints)} waypoints, at least {min_waypoints} required")
        if not self.closed:
            raise DegenerateMeshError("mesh walk never closed the loop")
        overlap = self.overlap_fraction()
        if overlap > max_overlap:
            raise DegenerateMeshError(
                f"mesh runs over itself ({overlap:.0%} of waypoints retrace the loop), "
                f"the walk went round more than once")
        return self

    def overlap_fraction(self, min_gap: int = 3) -> float:
        """
        Share of waypoints that lie within one median segment of another waypoint
        at least `min_gap` steps away along the loop. Close to 1 for a doubled walk.
        """
        n = len(self.waypoints)
        if n <= 2 * min_gap:
            return 0.0
        pos = self.positions
        seg = np.median(np.linalg.norm(np.roll(pos, -1, axis=0) - pos, axis=1))
        d = np.linalg.norm(pos[:, None, :] - pos[None, :, :], axis=2)
        idx = np.arange(n)
        gap = np.abs(idx[:, None] - idx[None, :])
        gap = np.minimum(gap, n - gap)
        retraced = ((d < seg) & (gap >= min_gap)).any(axis=1)
        return float(retraced.mean())

    # -------------------------
    # Frenet queries
    # -------------------------

    def closest_waypoint(self, point: np.ndarray) -> Tuple[Waypoint, int]:
        """Nearest waypoint by Euclidean distance. Ties go to the lowest index."""
        if not self.waypoints:
            raise DegenerateMeshError("cannot query an empty mesh")
        d2 = ((self.positions - np.asarray(point, dtype=float)) ** 2).sum(axis=1)
        idx = int(np.argmin(d2))
        return self.waypoints[idx], idx

    def world_to_frenet(self, point: np.ndarray) -> Tuple[float, float]:
        """
        (s, d) of a world point.
        s is the arc length stored on the nearest waypoint (no interpolation along the
        tangent); d is the signed offset along that waypoint's normal, positive to the right.
        """
        wp, _ = self.closest_waypoint(point)
        d = float(np.dot(np.asarray(point, dtype=float) - wp.position, wp.normal))
        return wp.arc_length, d

    # -------------------------
    # Rendering helpers
    # -------------------------

    @property
    def interpolated_centerline(self) -> np.ndarray:
        """Smooth periodic spline through the waypoints, for drawing only."""
        if self._interpolated_centerline is None:
            self._interpolated_centerline = self._compute_interpolated_centerline()
        return self._interpolated_centerline

    def _compute_interpolated_centerline(self) -> np.ndarray:
        centerline = self.positions
        if len(centerline) < 4:
            return centerline.copy()
        try:
            if not np.allclose(centerline[0], centerline[-1], atol=1e-6):
                centerline = np.vstack([centerline, centerline[0]])
            tck, _ = splprep([centerline[:, 0], centerline[:, 1]], s=0, k=3, per=True)
            u_new = np.linspace(0, 1, self.interpolation_resolution, endpoint=False)
            interp_x, interp_y = splev(u_new, tck)
            return np.column_stack([interp_x, interp_y])
        except ValueError as e:
            print(f"Warning: Spline interpolation failed ({e}), using raw waypoints")
            return self.positions.copy()

    def to_json(self) -> dict:
        return {
            "name": self.name,
            "total_length": self.total_length,
            "closed": self.closed,
            "positions": self.positions.tolist(),
            "normals": self.normals.tolist(),
            "widths": self.widths.tolist(),
            "arc_lengths": [w.arc_length for w in self.waypoints],
        }

    @staticmethod
    def from_json(d: dict) -> "TrackMesh":
        return TrackMesh.from_arrays(
            positions=np.array(d["positions"], dtype=float).reshape(-1, 2),
            normals=np.array(d["normals"], dtype=float).reshape(-1, 2),
            widths=np.array(d["widths"], dtype=float),
            arc_lengths=np.array(d["arc_lengths"], dtype=float),
            total_length=float(d["total_length"]),
            closed=bool(d.get("closed", True)),
            name=d.get("name", "track"),
        )


def save_mesh_json(mesh: TrackMesh, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(mesh.to_json(), f, ensure_ascii=False, indent=2)


def load_mesh_json(path: str) -> TrackMesh:
    with open(path, "r", encoding="utf-8") as f:
        return TrackMesh.from_json(json.load(f))


# -------------------------
# Synthetic track images
# -------------------------

WALL_RGB = (0, 0, 0)
TARMAC_RGB = (255, 255, 255)
START_RGB = (255, 0, 0)
DIRECTION_RGB = (255, 255, 0)
GRAVEL_RGB = (0, 200, 0)


def rasterize(geom, width: int, height: int) -> np.ndarray:
    """Boolean (height, width) mask of the pixels whose centers lie inside geom."""
    xs, ys = np.meshgrid(np.arange(width) + 0.5, np.arange(height) + 0.5)
    return shapely.contains_xy(geom, xs, ys)


def _paint_marker(img: np.ndarray, track: np.ndarray, at: Tuple[float, float],
                  rgb: Tuple[int, int, int], size: int) -> None:
    x0, y0 = int(at[0]) - size // 2, int(at[1]) - size // 2
    patch = np.zeros(track.shape, dtype=bool)
    patch[max(y0, 0):max(y0 + size, 0), max(x0, 0):max(x0 + size, 0)] = True
    img[patch & track] = rgb


def render_track_image(track_area, width: int, height: int,
                       start: Optional[Tuple[float, float]] = None,
                       direction: Optional[Tuple[float, float]] = None,
                       gravel: Optional[Tuple[int, int, int, int]] = None,
                       marker_size: int = 4) -> np.ndarray:
    """
    RGB image of a track polygon: tarmac inside, wall outside.
    Optional start/direction markers are painted on tarmac only; the gravel box
    (x0, y0, x1, y1) is painted over whatever lies below it.
    """
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:] = WALL_RGB
    track = rasterize(track_area, width, height)
    img[track] = TARMAC_RGB
    if gravel is not None:
        gx0, gy0, gx1, gy1 = gravel
        img[gy0:gy1, gx0:gx1] = GRAVEL_RGB
    if start is not None:
        _paint_marker(img, track, start, START_RGB, marker_size)
    if direction is not None:
        _paint_marker(img, track, direction, DIRECTION_RGB, marker_size)
    return img


def make_circular_track_image(center: Tuple[float, float] = (100.0, 100.0),
                              inner_radius: float = 45.0, outer_radius: float = 65.0,
                              size: Tuple[int, int] = (200, 200), **markers) -> np.ndarray:
    c = Point(center)
    ring = c.buffer(outer_radius, 64).difference(c.buffer(inner_radius, 64))
    return render_track_image(ring, size[0], size[1], **markers)


def make_rectangle_ring_image(ring_width: int = 200, ring_height: int = 140,
                              track_width: int = 20, margin: int = 20, **markers) -> np.ndarray:
    """Hollow rectangle of tarmac, `track_width` wide, surrounded by `margin` of wall."""
    outer = box(margin, margin, margin + ring_width, margin + ring_height)
    inner = box(margin + track_width, margin + track_width,
                margin + ring_width - track_width, margin + ring_height - track_width)
    return render_track_image(outer.difference(inner),
                              ring_width + 2 * margin, ring_height + 2 * margin, **markers)


def make_oval_track_image(a: float = 300.0, b: float = 200.0, n: int = 600, width: float = 50.0,
                          rotate_deg: float = 0.0, size: Tuple[int, int] = (800, 600),
                          **markers) -> np.ndarray:
    t = np.linspace(0, 2 * np.pi, n, endpoint=False)
    center = np.stack([a * np.cos(t), b * np.sin(t)], axis=1)
    ls = LineString(np.vstack([center, center[:1]]))
    ls = rotate(ls, rotate_deg, origin=(0, 0), use_radians=False)
    ls = translate(ls, size[0] / 2.0, size[1] / 2.0)
    band = ls.buffer(width / 2.0)
    if not isinstance(band, Polygon):
        band = max(band.geoms, key=lambda g: g.area)
    return render_track_image(band, size[0], size[1], **markers)


def oval_start_markers(a: float = 300.0, b: float = 200.0, rotate_deg: float = 0.0,
                       size: Tuple[int, int] = (800, 600), lead: float = 30.0) -> dict:
    """Start marker on the oval's rightmost point (before rotation), direction marker `lead` ahead of it."""
    th = np.deg2rad(rotate_deg)
    rot = np.array([[np.cos(th), -np.sin(th)], [np.sin(th), np.cos(th)]])
    origin = np.array([size[0] / 2.0, size[1] / 2.0])
    start = origin + rot @ np.array([a, 0.0])
    direction = start + rot @ np.array([0.0, lead])
    return {"start": tuple(start.tolist()), "direction": tuple(direction.tolist())}
