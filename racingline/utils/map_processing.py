from __future__ import annotations
import math
import numpy as np


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector along v; the zero vector stays zero."""
    n = float(np.linalg.norm(v))
    if n == 0.0:
        return np.zeros(2)
    return np.asarray(v, dtype=float) / n


def perpendicular(v: np.ndarray) -> np.ndarray:
    """Rotate by +90 degrees in image coordinates (y down): right-hand side of travel."""
    return np.array([-v[1], v[0]], dtype=float)


def tangent_from_normal(normal: np.ndarray) -> np.ndarray:
    """Inverse of `perpendicular`: the normal rotated by -90 degrees."""
    return np.array([normal[1], -normal[0]], dtype=float)


def perpendiculars(vs: np.ndarray) -> np.ndarray:
    return np.stack([-vs[:, 1], vs[:, 0]], axis=1)


def normalize_rows(vs: np.ndarray, fallback: np.ndarray | None = None) -> np.ndarray:
    """Row-wise normalisation. Zero rows keep the matching row of `fallback` (or stay zero)."""
    norms = np.linalg.norm(vs, axis=1, keepdims=True)
    safe = np.where(norms > 1e-12, norms, 1.0)
    out = vs / safe
    if fallback is not None:
        out = np.where(norms > 1e-12, out, fallback)
    return out


def wrap_angle(angle: float) -> float:
    """Wrap into (-pi, pi]."""
    return math.pi - (math.pi - angle) % (2.0 * math.pi)


def speed_along_tangent(vx: float, vy: float, tangent: np.ndarray) -> float:
    t = tangent / (np.linalg.norm(tangent) + 1e-6)
    return vx * t[0] + vy * t[1]


def circular_moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average over a closed loop of rows (wraps at both ends)."""
    half = window // 2
    acc = np.zeros_like(values, dtype=float)
    for j in range(-half, half + 1):
        acc += np.roll(values, -j, axis=0)
    return acc / (2 * half + 1)
