"""Motion primitives - expands a plan of named camera moves into a CameraPath.

A plan is an ordered list of steps (orbit, dolly, truck, pedestal, pan, tilt,
zoom, rotate, focus_on, move_to, static). Steps run one after another against
a running camera pose. Each step becomes one or more keyframes; a move that
turns the view further than the per-keyframe angle limit is split so that
consecutive keyframes stay within it. Every keyframe is clamped into the
camera envelope and stopped short of the object's bounding box.

The result is an ordinary CameraPath, so it goes through ``validate_path``
and the SceneInterpreter exactly like an LLM response.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
from scipy.spatial.transform import Rotation

from shotcaller import config
from shotcaller.easing import DEFAULT_EASING, resolve_easing_name
from shotcaller.errors import AnimationError
from shotcaller.geometry import (
    EPSILON,
    angle_between,
    clamp_to_box,
    clamp_to_envelope,
    distance,
    inside_box,
    lerp,
    view_direction,
)
from shotcaller.models import (
    CameraKeyframe,
    CameraPath,
    CameraPose,
    EnvironmentalAnalysis,
    MotionPlan,
    MotionStep,
    PathMetadata,
    ReferencePoints,
    SceneAnalysis,
    Vector3,
)

logger = logging.getLogger(__name__)

WORLD_UP = np.array([0.0, 1.0, 0.0])
MOVE_TO_OFFSET = np.array([0.0, 0.5, 1.5])
MAX_REFINE_DEPTH = 6

Waypoint = tuple[np.ndarray, np.ndarray]

# Multipliers for qualitative magnitudes, keyed by canonical descriptor.
DISTANCE_SCALE = {"tiny": 0.1, "small": 0.3, "medium": 0.75, "large": 1.5, "huge": 3.0}
GOAL_DISTANCE_SCALE = {"tiny": 0.5, "small": 1.0, "medium": 1.5, "large": 2.5, "huge": 4.0}
ZOOM_FACTORS = {
    "in": {"tiny": 0.9, "small": 0.7, "medium": 0.5, "large": 0.3, "huge": 0.15},
    "out": {"tiny": 1.1, "small": 1.3, "medium": 1.8, "large": 2.5, "huge": 4.0},
}

_DESCRIPTOR_ALIASES = {
    "tiny": "tiny", "verytiny": "tiny", "extremelytiny": "tiny",
    "small": "small", "verysmall": "small", "close": "small", "near": "small",
    "nearer": "small", "closer": "small",
    "medium": "medium", "mid": "medium", "moderate": "medium",
    "large": "large", "verylarge": "large", "far": "large", "farther": "large", "distant": "large",
    "huge": "huge", "veryhuge": "huge", "gigantic": "huge", "veryfar": "huge", "extremelyfar": "huge",
}

_DIRECTION_ALIASES = {
    "in": "forward", "out": "backward",
    "counterclockwise": "counter-clockwise", "anticlockwise": "counter-clockwise",
}


def normalize_descriptor(raw: Any) -> str | None:
    """Canonical descriptor (tiny..huge) for a loose qualitative word, or None."""
    if not isinstance(raw, str):
        return None
    key = raw.lower().replace(" ", "").replace("_", "").replace("-", "")
    return _DESCRIPTOR_ALIASES.get(key)


def speed_easing(easing: Any, speed: Any) -> str:
    """Easing for a move, nudged by its qualitative speed when no easing was asked for."""
    name = resolve_easing_name(easing if isinstance(easing, str) else None)
    if speed == "very_fast":
        return "linear"
    if name == DEFAULT_EASING:
        if speed == "fast":
            return "easeOutQuad"
        if speed == "slow":
            return "easeInOutQuad"
    return name


def allocate_durations(steps: list[MotionStep], total: float) -> list[float]:
    """Split ``total`` across ``steps`` by ``duration_ratio``.

    A step without a ratio gets an even share (1 / len(steps)). Shares are
    normalized so they always sum to ``total``.
    """
    weights = np.array([s.duration_ratio if s.duration_ratio > 0 else 1.0 / len(steps) for s in steps])
    return [float(w) for w in weights / weights.sum() * total]


def segment_entry(start, end, box_min, box_max) -> float | None:
    """Fraction along start->end where the segment enters the box, if it does."""
    start = np.asarray(start, dtype=float)
    direction = np.asarray(end, dtype=float) - start
    t_near, t_far = 0.0, 1.0
    for axis in range(3):
        if abs(direction[axis]) < EPSILON:
            if not box_min[axis] < start[axis] < box_max[axis]:
                return None
            continue
        t1 = (box_min[axis] - start[axis]) / direction[axis]
        t2 = (box_max[axis] - start[axis]) / direction[axis]
        t_near = max(t_near, min(t1, t2))
        t_far = min(t_far, max(t1, t2))
        if t_far - t_near <= EPSILON:
            return None
    return t_near


def rotate_about(point, pivot, axis, degrees: float) -> np.ndarray:
    axis = np.asarray(axis, dtype=float)
    rotation = Rotation.from_rotvec(axis / np.linalg.norm(axis) * math.radians(degrees))
    pivot = np.asarray(pivot, dtype=float)
    return pivot + rotation.apply(np.asarray(point, dtype=float) - pivot)


def camera_right(position, target) -> np.ndarray:
    right = np.cross(view_direction(position, target), WORLD_UP)
    norm = np.linalg.norm(right)
    if norm < 1e-6:
        return np.array([1.0, 0.0, 0.0])
    return right / norm


def resolve_target(name: Any, scene: SceneAnalysis, current_target: np.ndarray) -> np.ndarray | None:
    """World point for a target name: ``current_target``, an ``object_*`` anchor,
    a reference point (``highest``, ``frontmost``...) or a feature description."""
    if not isinstance(name, str):
        return None
    if name == "current_target":
        return np.array(current_target, dtype=float)

    cx, cy, cz = scene.center.to_array()
    lo = scene.bounding_box.min
    hi = scene.bounding_box.max
    anchors = {
        "object_center": (cx, cy, cz),
        "object_top_center": (cx, hi.y, cz),
        "object_bottom_center": (cx, lo.y, cz),
        "object_left_center": (lo.x, cy, cz),
        "object_right_center": (hi.x, cy, cz),
        "object_front_center": (cx, cy, hi.z),
        "object_back_center": (cx, cy, lo.z),
    }
    if name in anchors:
        return np.array(anchors[name], dtype=float)
    if scene.reference_points is not None and name in ReferencePoints.model_fields:
        return getattr(scene.reference_points, name).to_array()
    for feature in scene.feature_points:
        if feature.description == name:
            return feature.position.to_array()
    return None


@dataclass
class MotionPlannerConfig:
    max_segment_angle: float = config.MAX_ANGLE_CHANGE_DEG
    obstacle_clearance: float = 0.01


@dataclass
class _Step:
    params: dict[str, Any]
    position: np.ndarray
    target: np.ndarray
    scene: SceneAnalysis
    environment: EnvironmentalAnalysis
    angle_limit: float

    @property
    def object_size(self) -> float:
        return max(float(np.linalg.norm(self.scene.dimensions.to_array())), 0.1)

    def choice(self, key: str, allowed: set[str]) -> str:
        raw = self.params.get(key)
        value = raw.lower() if isinstance(raw, str) else None
        if value not in allowed:
            value = _DIRECTION_ALIASES.get(value, value)
        if value not in allowed:
            raise ValueError(f"invalid {key} {raw!r}")
        return value

    def angle(self) -> float:
        raw = self.params.get("angle")
        if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw == 0:
            raise ValueError(f"invalid angle {raw!r}")
        return float(raw)

    def resolve(self, key: str, default: str | None = None) -> np.ndarray:
        name = self.params.get(key, default)
        point = resolve_target(name, self.scene, self.target)
        if point is None:
            raise ValueError(f"cannot resolve {key} {name!r}")
        return point

    def pieces(self, degrees: float) -> int:
        return max(1, math.ceil(abs(degrees) / self.angle_limit - 1e-9))


class MotionPlanner:
    """Stateless plan-to-path transform."""

    def __init__(self, planner_config: MotionPlannerConfig | None = None):
        self.config = planner_config or MotionPlannerConfig()
        self._handlers: dict[str, Callable[[_Step], list[Waypoint]]] = {
            "static": self._static,
            "orbit": self._orbit,
            "dolly": self._dolly,
            "truck": self._truck,
            "pedestal": self._pedestal,
            "pan": self._pan,
            "tilt": self._tilt,
            "rotate": self._rotate,
            "zoom": self._zoom,
            "focus_on": self._focus_on,
            "move_to": self._move_to,
        }

    def initialize(self, planner_config: MotionPlannerConfig) -> None:
        self.config = planner_config
        logger.info(f"Motion planner initialized (max segment angle={planner_config.max_segment_angle})")

    def plan_path(
        self,
        plan: MotionPlan,
        scene: SceneAnalysis,
        environment: EnvironmentalAnalysis,
        current_pose: CameraPose,
        model_id: str | None = None,
    ) -> CameraPath:
        """Expand ``plan`` from ``current_pose`` into keyframes summing to ``plan.duration``.

        A step whose parameters cannot be used holds the camera still for its
        share of the duration.
        """
        constraints = environment.camera_constraints
        angle_limit = min(self.config.max_segment_angle, constraints.max_angle_change)
        if angle_limit <= 0:
            raise AnimationError(f"Angle limit must be positive, got {angle_limit}")

        position = current_pose.position.to_array()
        target = current_pose.target.to_array()
        keyframes: list[CameraKeyframe] = []

        for index, (step, step_duration) in enumerate(zip(plan.steps, allocate_durations(plan.steps, plan.duration))):
            current = _Step(step.parameters, position, target, scene, environment, angle_limit)
            try:
                waypoints = self._handlers[step.type](current)
            except ValueError as e:
                logger.warning(f"Step {index} ({step.type}) held in place: {e}")
                waypoints = [(position, target)]

            waypoints = self._refine(position, target, waypoints, angle_limit)
            easing = speed_easing(step.parameters.get("easing"), step.parameters.get("speed"))
            if len(waypoints) > 1:
                easing = "linear"
            piece = step_duration / len(waypoints)
            for raw_position, raw_target in waypoints:
                position, target = self._settle(position, raw_position, raw_target, environment)
                keyframes.append(CameraKeyframe(
                    position=Vector3.from_array(position),
                    target=Vector3.from_array(target),
                    duration=piece,
                    easing=easing,
                ))
            logger.debug(f"Step {index} ({step.type}): {len(waypoints)} keyframes over {step_duration:.2f}s")

        logger.info(f"Planned {len(keyframes)} keyframes from {len(plan.steps)} motion steps")
        return CameraPath(
            keyframes=keyframes,
            duration=plan.duration,
            metadata=PathMetadata(style=plan.style, safety_constraints=constraints),
            model_id=model_id,
        )

    # ── Geometry plumbing ───────────────────────────────────────

    @staticmethod
    def _refine(position, target, waypoints: list[Waypoint], limit: float) -> list[Waypoint]:
        """Insert midpoints wherever consecutive views differ by more than ``limit`` degrees."""
        refined: list[Waypoint] = []
        previous = (position, target)
        for waypoint in waypoints:
            stack = [(previous, waypoint, 0)]
            while stack:
                start, end, depth = stack.pop()
                turn = angle_between(view_direction(*start), view_direction(*end))
                if turn <= limit + 1e-6 or depth >= MAX_REFINE_DEPTH:
                    refined.append(end)
                    continue
                middle = (lerp(start[0], end[0], 0.5), lerp(start[1], end[1], 0.5))
                stack.append((middle, end, depth + 1))
                stack.append((start, middle, depth + 1))
            previous = waypoint
        return refined

    def _settle(self, previous, position, target, environment: EnvironmentalAnalysis) -> Waypoint:
        """Clamp into the envelope and stop short of the object's bounding box."""
        c = environment.camera_constraints
        target = clamp_to_box(target, environment.environment.min.to_array(), environment.environment.max.to_array())
        position = clamp_to_envelope(position, target, c.min_distance, c.max_distance, c.min_height, c.max_height)

        box_min = environment.object_bounds.min.to_array()
        box_max = environment.object_bounds.max.to_array()
        hit = segment_entry(previous, position, box_min, box_max)
        if hit is not None:
            length = distance(previous, position)
            back = max(0.0, hit - self.config.obstacle_clearance / length) if length > EPSILON else 0.0
            position = lerp(previous, position, back)
            position = clamp_to_envelope(position, target, c.min_distance, c.max_distance, c.min_height, c.max_height)
            logger.warning(f"Move stopped at the object bounds ({hit:.2f} of the way)")
        if inside_box(position, box_min, box_max):
            position = np.array(previous, dtype=float)
        return position, target

    @staticmethod
    def _amount(s: _Step, motion: str) -> float:
        """Distance for a translating move from ``distance_override`` or ``distance_descriptor``."""
        override = s.params.get("distance_override")
        if isinstance(override, (int, float)) and not isinstance(override, bool) and override > 0:
            return float(override)
        descriptor = normalize_descriptor(s.params.get("distance_descriptor"))
        if descriptor is None:
            raise ValueError("no distance_override or distance_descriptor")

        dims = s.scene.dimensions
        current = distance(s.position, s.target)
        base = {
            "pedestal": dims.y,
            "truck": dims.x,
            "dolly": max(s.object_size * 0.5, current * 0.5),
        }.get(motion, s.object_size)
        base = max(base, 0.1)
        scale = DISTANCE_SCALE[descriptor]
        value = base * scale
        if motion == "dolly" and descriptor in ("tiny", "small") and current < base:
            value = current * scale
        return max(min(value, max(s.object_size * 5, 20.0)), 1e-6)

    # ── Primitives ──────────────────────────────────────────────

    @staticmethod
    def _static(s: _Step) -> list[Waypoint]:
        return [(s.position, s.target)]

    @staticmethod
    def _orbit(s: _Step) -> list[Waypoint]:
        direction = s.choice("direction", {"left", "right", "clockwise", "counter-clockwise", "up", "down"})
        degrees = s.angle()
        center = s.resolve("target", "object_center")

        if direction in ("up", "down"):
            axis = camera_right(s.position, center)
            signed = -degrees if direction == "up" else degrees
        else:
            axis_name = s.params.get("axis", "y")
            axis = {"x": (1.0, 0.0, 0.0), "z": (0.0, 0.0, 1.0)}.get(axis_name, (0.0, 1.0, 0.0))
            signed = -degrees if direction in ("clockwise", "left") else degrees

        n = s.pieces(degrees)
        return [(rotate_about(s.position, center, axis, signed * k / n), center) for k in range(1, n + 1)]

    def _dolly(self, s: _Step) -> list[Waypoint]:
        forward = view_direction(s.position, s.target)
        if not np.any(forward):
            raise ValueError("camera has no view direction")

        goal = normalize_descriptor(s.params.get("target_distance_descriptor"))
        if goal is not None:
            return [(s.target - forward * GOAL_DISTANCE_SCALE[goal] * s.object_size, s.target)]
        if "destination_target" in s.params:
            travel = float(np.dot(s.resolve("destination_target") - s.position, forward))
            return [(s.position + forward * travel, s.target)]

        sign = 1.0 if s.choice("direction", {"forward", "backward"}) == "forward" else -1.0
        return [(s.position + forward * sign * self._amount(s, "dolly"), s.target)]

    def _truck(self, s: _Step) -> list[Waypoint]:
        right = camera_right(s.position, s.target)
        if "destination_target" in s.params:
            travel = float(np.dot(s.resolve("destination_target") - s.position, right))
        else:
            sign = 1.0 if s.choice("direction", {"left", "right"}) == "right" else -1.0
            travel = sign * self._amount(s, "truck")
        return [(s.position + right * travel, s.target + right * travel)]

    def _pedestal(self, s: _Step) -> list[Waypoint]:
        if "destination_target" in s.params:
            travel = float(s.resolve("destination_target")[1] - s.position[1])
        else:
            sign = 1.0 if s.choice("direction", {"up", "down"}) == "up" else -1.0
            travel = sign * self._amount(s, "pedestal")
        return [(s.position + WORLD_UP * travel, s.target + WORLD_UP * travel)]

    @staticmethod
    def _turn(s: _Step, axis, signed: float) -> list[Waypoint]:
        n = s.pieces(signed)
        return [(s.position, rotate_about(s.target, s.position, axis, signed * k / n)) for k in range(1, n + 1)]

    def _pan(self, s: _Step) -> list[Waypoint]:
        direction = s.choice("direction", {"left", "right"})
        degrees = s.angle()
        return self._turn(s, WORLD_UP, degrees if direction == "left" else -degrees)

    def _tilt(self, s: _Step) -> list[Waypoint]:
        direction = s.choice("direction", {"up", "down"})
        degrees = s.angle()
        return self._turn(s, camera_right(s.position, s.target), degrees if direction == "up" else -degrees)

    def _rotate(self, s: _Step) -> list[Waypoint]:
        axis = s.params.get("axis", "yaw")
        axis = axis.lower() if isinstance(axis, str) else "yaw"
        degrees = s.angle()
        if axis == "roll":
            raise ValueError("roll needs a camera up vector, which keyframes do not carry")
        if axis == "pitch":
            return self._turn(s, camera_right(s.position, s.target), degrees)
        return self._turn(s, WORLD_UP, degrees)

    @staticmethod
    def _zoom(s: _Step) -> list[Waypoint]:
        direction = s.choice("direction", {"in", "out"})
        focus = s.resolve("target", "current_target")
        current = distance(s.position, focus)
        if current < EPSILON:
            raise ValueError("camera is already at the zoom target")

        goal = normalize_descriptor(s.params.get("target_distance_descriptor"))
        override = s.params.get("factor_override")
        if goal is not None:
            new_distance = GOAL_DISTANCE_SCALE[goal] * s.object_size
        elif isinstance(override, (int, float)) and not isinstance(override, bool) and override > 0:
            new_distance = current * float(override)
        else:
            descriptor = normalize_descriptor(s.params.get("factor_descriptor")) or "medium"
            factor = ZOOM_FACTORS[direction][descriptor]
            new_distance = current * factor

        c = s.environment.camera_constraints
        new_distance = min(max(new_distance, c.min_distance), c.max_distance)
        return [(focus - view_direction(s.position, focus) * new_distance, focus)]

    @staticmethod
    def _focus_on(s: _Step) -> list[Waypoint]:
        new_target = s.resolve("target")
        position = s.position
        if s.params.get("adjust_framing", True) is not False:
            c = s.environment.camera_constraints
            current = distance(position, new_target)
            if current > EPSILON:
                framed = min(max(current, c.min_distance), c.max_distance)
                position = new_target - view_direction(position, new_target) * framed
        return [(position, new_target)]

    @staticmethod
    def _move_to(s: _Step) -> list[Waypoint]:
        destination = s.resolve("target")
        return [(destination + MOVE_TO_OFFSET, destination)]


def compose_zigzag(segments: int = 4, amplitude: str = "small") -> list[MotionStep]:
    """Alternating lateral trucks and backward dollies, evenly timed."""
    if segments < 1:
        raise ValueError(f"segments must be at least 1, got {segments}")
    ratio = 1.0 / (2 * segments)
    steps = []
    for i in range(segments):
        steps.append(MotionStep(
            type="truck",
            parameters={"direction": "right" if i % 2 else "left", "distance_descriptor": amplitude},
            duration_ratio=ratio,
        ))
        steps.append(MotionStep(
            type="dolly",
            parameters={"direction": "backward", "distance_descriptor": amplitude},
            duration_ratio=ratio,
        ))
    return steps
