"""Vector helpers shared by the analyzers, validator and interpreter."""

import math

import numpy as np

EPSILON = 1e-9


def as_vec(value) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(3)


def lerp(a, b, t: float) -> np.ndarray:
    a = as_vec(a)
    return a + (as_vec(b) - a) * t


def distance(a, b) -> float:
    return float(np.linalg.norm(as_vec(a) - as_vec(b)))


def is_finite(value) -> bool:
    return bool(np.all(np.isfinite(as_vec(value))))


def view_direction(position, target) -> np.ndarray:
    """Unit vector from camera position to its look-at target."""
    offset = as_vec(target) - as_vec(position)
    length = np.linalg.norm(offset)
    if length < EPSILON:
        return np.zeros(3)
    return offset / length


def angle_between(a, b) -> float:
    """Angle in degrees between two direction vectors (0 if either is zero)."""
    a = as_vec(a)
    b = as_vec(b)
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na < EPSILON or nb < EPSILON:
        return 0.0
    cos = float(np.dot(a, b) / (na * nb))
    return math.degrees(math.acos(min(1.0, max(-1.0, cos))))


def clamp_to_envelope(
    position,
    target,
    min_distance: float,
    max_distance: float,
    min_height: float,
    max_height: float,
) -> np.ndarray:
    """Move a camera position into the height band and distance shell.

    Height is clamped first; the distance to ``target`` is then corrected by
    scaling the horizontal offset only, so the clamped height is preserved.
    """
    p = as_vec(position).copy()
    t = as_vec(target)
    p[1] = min(max(p[1], min_height), max_height)

    offset = p - t
    dist = float(np.linalg.norm(offset))
    if min_distance <= dist <= max_distance:
        return p

    bound = min_distance if dist < min_distance else max_distance
    dy = float(offset[1])
    if abs(dy) > bound:
        # shell and band only meet directly above or below the target
        p[0], p[2] = t[0], t[2]
        p[1] = t[1] + math.copysign(bound, dy)
        return p

    horizontal = np.array([offset[0], offset[2]])
    h_len = float(np.linalg.norm(horizontal))
    if h_len < EPSILON:
        horizontal = np.array([0.0, 1.0])
        h_len = 1.0
    scale = math.sqrt(bound * bound - dy * dy) / h_len
    p[0] = t[0] + horizontal[0] * scale
    p[2] = t[2] + horizontal[1] * scale
    return p


def clamp_to_box(point, box_min, box_max) -> np.ndarray:
    return np.minimum(np.maximum(as_vec(point), as_vec(box_min)), as_vec(box_max))


def inside_box(point, box_min, box_max) -> bool:
    p = as_vec(point)
    return bool(np.all(p > as_vec(box_min)) and np.all(p < as_vec(box_max)))
