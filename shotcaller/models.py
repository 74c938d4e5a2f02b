"""Pydantic models for the Shotcaller prompt-to-path pipeline and API.

Wire names are camelCase (``modelId``, ``safetyConstraints``); Python code
uses the snake_case field names.
"""

from typing import Any, Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shotcaller.easing import resolve_easing
from shotcaller.geometry import clamp_to_envelope, lerp


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )


# ── Geometry ────────────────────────────────────────────────────


class Vector3(WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, values) -> "Vector3":
        x, y, z = (float(v) for v in values)
        return cls(x=x, y=y, z=z)


class BoundingBox(WireModel):
    min: Vector3
    max: Vector3

    @property
    def center(self) -> Vector3:
        return Vector3.from_array((self.min.to_array() + self.max.to_array()) / 2)

    @property
    def dimensions(self) -> Vector3:
        return Vector3.from_array(self.max.to_array() - self.min.to_array())


class CameraPose(WireModel):
    position: Vector3
    target: Vector3
    fov: float = 50.0


class CameraSnapshot(CameraPose):
    front: Vector3 = Vector3(x=0.0, y=0.0, z=1.0)
    up: Vector3 = Vector3(x=0.0, y=1.0, z=0.0)


class ModelOrientation(WireModel):
    position: Vector3 = Vector3()
    rotation: Vector3 = Vector3()
    scale: Vector3 = Vector3(x=1.0, y=1.0, z=1.0)


# ── Scene analysis ──────────────────────────────────────────────


class FeaturePoint(WireModel):
    kind: Literal["extreme", "curvature", "landmark"] = "landmark"
    position: Vector3
    description: Optional[str] = None


class Symmetry(WireModel):
    has_symmetry: bool = False
    planes: list[Literal["x", "y", "z"]] = Field(default_factory=list)


class ReferencePoints(WireModel):
    center: Vector3
    highest: Vector3
    lowest: Vector3
    leftmost: Vector3
    rightmost: Vector3
    frontmost: Vector3
    backmost: Vector3


class SceneAnalysis(WireModel):
    vertex_count: int
    face_count: int
    bounding_box: BoundingBox
    center: Vector3
    dimensions: Vector3
    feature_points: list[FeaturePoint] = Field(default_factory=list)
    symmetry: Symmetry = Symmetry()
    complexity: Literal["simple", "moderate", "complex"] = "simple"
    reference_points: Optional[ReferencePoints] = None
    orientation: ModelOrientation = ModelOrientation()
    current_camera: Optional[CameraSnapshot] = None


class SceneAnalysisSummary(WireModel):
    """Geometry summary sent by clients with a path-generation request."""

    bounding_box: BoundingBox
    center: Optional[Vector3] = None
    dimensions: Optional[Vector3] = None
    vertex_count: int = 0
    face_count: int = 0
    feature_points: list[FeaturePoint] = Field(default_factory=list)
    orientation: Optional[ModelOrientation] = None
    current_camera: Optional[CameraSnapshot] = None


# ── Environment ─────────────────────────────────────────────────


class EnvironmentBounds(WireModel):
    min: Vector3
    max: Vector3
    center: Vector3
    dimensions: Vector3


class BoundaryDistances(WireModel):
    left: float
    right: float
    front: float
    back: float
    top: float
    bottom: float


class CameraConstraints(WireModel):
    min_distance: float
    max_distance: float
    min_height: float
    max_height: float
    max_speed: float
    max_angle_change: float = Field(..., description="Degrees per keyframe step")
    min_framing_margin: float


class EnvironmentalAnalysis(WireModel):
    environment: EnvironmentBounds
    object_bounds: BoundingBox
    distances: BoundaryDistances
    camera_constraints: CameraConstraints


# ── Metadata ────────────────────────────────────────────────────


class LightingSettings(WireModel):
    intensity: float = 1.0
    color: str = "#ffffff"
    position: Vector3 = Vector3(x=0.0, y=10.0, z=0.0)


class SceneColors(WireModel):
    background: str = "#000000"
    ground: str = "#808080"
    atmosphere: str = "#87CEEB"


class ConstraintOverrides(WireModel):
    min_distance: Optional[float] = None
    max_distance: Optional[float] = None
    min_height: Optional[float] = None
    max_height: Optional[float] = None
    max_speed: Optional[float] = None
    max_angle_change: Optional[float] = None
    min_framing_margin: Optional[float] = None


class EnvironmentalMetadata(WireModel):
    lighting: LightingSettings = LightingSettings()
    camera: Optional[CameraPose] = None
    scene: SceneColors = SceneColors()
    constraints: ConstraintOverrides = ConstraintOverrides()


class UserPreferences(WireModel):
    default_camera_distance: float = 5.0
    default_camera_height: float = 1.5
    preferred_view_angles: list[float] = Field(default_factory=list)


class ModelMetadata(WireModel):
    model_id: str = ""
    user_id: str = ""
    file: str = ""
    orientation: ModelOrientation = ModelOrientation()
    scene: Optional[SceneAnalysisSummary] = None
    environment: Optional[EnvironmentalMetadata] = None
    preferences: UserPreferences = UserPreferences()
    version: int = 1


# ── Prompt / path ───────────────────────────────────────────────


class CompiledPrompt(WireModel):
    system_message: str
    user_message: str
    constraints: CameraConstraints
    current_camera: CameraPose
    duration: float
    model_id: str
    request_id: str
    max_tokens: int
    temperature: float
    token_count: int


class CameraKeyframe(WireModel):
    position: Vector3
    target: Vector3
    duration: float
    easing: Optional[str] = None


class PathMetadata(WireModel):
    style: str = "smooth"
    focus: str = "model"
    safety_constraints: Optional[CameraConstraints] = None


class CameraPath(WireModel):
    keyframes: list[CameraKeyframe]
    duration: float
    metadata: PathMetadata = PathMetadata()
    model_id: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict) -> "CameraPath":
        return cls.model_validate(data)


class CameraCommand(WireModel):
    start: CameraPose
    end: CameraPose
    duration: float = Field(..., gt=0)
    easing: str = "linear"
    constraints: Optional[CameraConstraints] = None

    def pose_at(self, local_progress: float) -> CameraPose:
        """Eased, envelope-clamped pose at local progress in [0, 1]."""
        t = min(max(local_progress, 0.0), 1.0)
        eased = resolve_easing(self.easing)(t)
        position = lerp(self.start.position.to_array(), self.end.position.to_array(), eased)
        target = lerp(self.start.target.to_array(), self.end.target.to_array(), eased)
        if self.constraints is not None:
            c = self.constraints
            position = clamp_to_envelope(
                position, target,
                c.min_distance, c.max_distance, c.min_height, c.max_height,
            )
        fov = self.start.fov + (self.end.fov - self.start.fov) * eased
        return CameraPose(
            position=Vector3.from_array(position),
            target=Vector3.from_array(target),
            fov=fov,
        )


class ValidationResult(WireModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)


# ── Motion plans ────────────────────────────────────────────────

PrimitiveType = Literal[
    "static", "orbit", "dolly", "truck", "pedestal", "pan", "tilt",
    "zoom", "rotate", "focus_on", "move_to",
]


class MotionStep(WireModel):
    """One named camera move. ``duration_ratio`` is its share of the plan duration."""

    type: PrimitiveType
    parameters: dict[str, Any] = Field(default_factory=dict)
    duration_ratio: float = Field(0.0, ge=0.0)


class MotionPlan(WireModel):
    steps: list[MotionStep] = Field(..., min_length=1)
    duration: float = Field(10.0, ge=1.0, le=20.0)
    style: str = "primitive"


# ── Playback ────────────────────────────────────────────────────

SessionStatus = Literal["idle", "generating", "ready", "playing", "paused", "complete"]


class PlaybackState(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    status: SessionStatus = "idle"
    progress: float = Field(0.0, ge=0.0, le=100.0)
    playback_speed: float = Field(1.0, gt=0.0)
    recording: bool = False


# ── API ─────────────────────────────────────────────────────────


class CameraPathRequest(WireModel):
    instruction: str = Field(..., min_length=1, description="Natural-language camera instruction")
    scene_geometry: SceneAnalysisSummary
    duration: float = Field(10.0, ge=1.0, le=20.0)
    model_id: str = Field(..., min_length=1)
    provider: Literal["claude", "gemini"] = "claude"
    model: Optional[str] = None


class CameraPathResponse(WireModel):
    keyframes: list[CameraKeyframe]
    duration: float
    metadata: PathMetadata
    commands: list[CameraCommand] = Field(default_factory=list)
    request_id: Optional[str] = None


class ValidatePathRequest(WireModel):
    path: CameraPath


class ErrorResponse(WireModel):
    error: str
    details: Optional[list[str]] = None


class HealthResponse(WireModel):
    status: str = "ok"
    version: str = ""
    providers: dict = {}


class MotionPlanRequest(WireModel):
    plan: MotionPlan
    scene_geometry: SceneAnalysisSummary
    model_id: str = Field(..., min_length=1)
