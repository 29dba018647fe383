"""
Occupancy grid built from a decoded track image.

Every pixel is classified once into a CellKind; the grid is read-only
afterwards. Any lookup outside the image resolves to a wall so that ray
marches and collision checks never need their own bounds checks.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional, Tuple
import numpy as np
from scipy import ndimage


class CellKind(IntEnum):
    WALL = 0
    TARMAC = 1
    GRAVEL = 2
    START = 3
    DIRECTION = 4


# indexed by CellKind
FRICTION = np.array([0.0, 1.0, 0.4, 1.0, 1.0])


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    friction: float


WALL_CELL = Cell(CellKind.WALL, 0.0)


def classify_color(r: int, g: int, b: int) -> CellKind:
    """Map one 8-bit RGB colour to a cell kind. Order matters: the first match wins."""
    if r > 200 and g > 200 and b > 200:
        return CellKind.TARMAC
    if r > 200 and g < 100 and b < 100:
        return CellKind.START
    if r > 200 and g > 200 and b < 100:
        return CellKind.DIRECTION
    if g > r + 50 and g > b + 50:
        return CellKind.GRAVEL
    if r < 50 and g < 50 and b < 50:
        return CellKind.WALL
    # bright leftovers are anti-aliased marker/track edges
    return CellKind.TARMAC


def classify_pixels(rgb: np.ndarray) -> np.ndarray:
    """Vectorised `classify_color` over an (H, W, 3) image."""
    r = rgb[..., 0].astype(np.int32)
    g = rgb[..., 1].astype(np.int32)
    b = rgb[..., 2].astype(np.int32)

    kinds = np.full(r.shape, CellKind.TARMAC, dtype=np.int8)
    # lowest priority first so that earlier rules overwrite later ones
    kinds[(r < 50) & (g < 50) & (b < 50)] = CellKind.WALL
    kinds[(g > r + 50) & (g > b + 50)] = CellKind.GRAVEL
    kinds[(r > 200) & (g > 200) & (b < 100)] = CellKind.DIRECTION
    kinds[(r > 200) & (g < 100) & (b < 100)] = CellKind.START
    kinds[(r > 200) & (g > 200) & (b > 200)] = CellKind.TARMAC
    return kinds


class OccupancyGrid:
    def __init__(self, kinds: np.ndarray):
        # kinds is indexed [y, x]
        self._kinds = np.array(kinds, dtype=np.int8)
        self._kinds.setflags(write=False)
        self.height, self.width = self._kinds.shape

    @classmethod
    def from_image(cls, rgb: np.ndarray,
                   classify: Optional[Callable[[int, int, int], CellKind]] = None) -> "OccupancyGrid":
        rgb = np.asarray(rgb)
        if rgb.ndim != 3 or rgb.shape[2] < 3:
            raise ValueError(f"expected an (H, W, 3) RGB image, got shape {rgb.shape}")
        if classify is None:
            return cls(classify_pixels(rgb[..., :3]))
        h, w = rgb.shape[:2]
        kinds = np.empty((h, w), dtype=np.int8)
        for y in range(h):
            for x in range(w):
                r, g, b = (int(c) for c in rgb[y, x, :3])
                kinds[y, x] = classify(r, g, b)
        return cls(kinds)

    @property
    def kinds(self) -> np.ndarray:
        return self._kinds

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int) -> Cell:
        if not self.in_bounds(x, y):
            return WALL_CELL
        kind = CellKind(int(self._kinds[y, x]))
        return Cell(kind, float(FRICTION[kind]))

    def kind_at(self, x: float, y: float) -> CellKind:
        """Kind of the cell containing the continuous point (x, y)."""
        return self.get(int(np.floor(x)), int(np.floor(y))).kind

    def is_wall(self, x: float, y: float) -> bool:
        return self.kind_at(x, y) == CellKind.WALL

    def friction_at(self, x: float, y: float) -> float:
        return self.get(int(np.floor(x)), int(np.floor(y))).friction

    def kinds_at(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """Vectorised lookup for integer cell coordinates of any (matching) shape."""
        xs = np.asarray(xs, dtype=np.int64)
        ys = np.asarray(ys, dtype=np.int64)
        inside = (xs >= 0) & (xs < self.width) & (ys >= 0) & (ys < self.height)
        out = np.full(xs.shape, CellKind.WALL, dtype=np.int8)
        out[inside] = self._kinds[ys[inside], xs[inside]]
        return out

    def walls_at(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        return self.kinds_at(xs, ys) == CellKind.WALL

    def marker_centroid(self, kind: CellKind) -> Optional[Tuple[float, float]]:
        mask = self._kinds == kind
        if not mask.any():
            return None
        cy, cx = ndimage.center_of_mass(mask)
        return float(cx), float(cy)

    def find_seed(self) -> Tuple[int, int]:
        """Start-marker centroid, else the first tarmac cell scanning columns left to right."""
        start = self.marker_centroid(CellKind.START)
        if start is not None:
            return int(start[0]), int(start[1])
        # argwhere on the transpose yields (x, y) pairs in column-major order
        tarmac = np.argwhere(self._kinds.T == CellKind.TARMAC)
        if len(tarmac) == 0:
            raise ValueError("grid has no drivable cell to seed the mesh from")
        return int(tarmac[0][0]), int(tarmac[0][1])


def read_track_image(path: str) -> np.ndarray:
    """Decode an image file into an (H, W, 3) uint8 array."""
    import matplotlib.pyplot as plt

    img = plt.imread(path)
    if img.ndim == 2:
        img = np.stack([img] * 3, axis=-1)
    img = img[..., :3]
    if np.issubdtype(img.dtype, np.floating):
        img = np.clip(np.round(img * 255.0), 0, 255)
    return img.astype(np.uint8)
