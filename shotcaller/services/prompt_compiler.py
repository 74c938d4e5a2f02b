"""Prompt Compiler - turns an instruction plus scene context into LLM messages."""

import logging
import math
import uuid
from dataclasses import dataclass

from shotcaller import config
from shotcaller.errors import PromptCompilationError
from shotcaller.models import (
    CameraConstraints,
    CameraPose,
    CompiledPrompt,
    ConstraintOverrides,
    EnvironmentalAnalysis,
    FeaturePoint,
    ModelMetadata,
    SceneAnalysis,
    ValidationResult,
    Vector3,
)
from shotcaller.prompts.examples import format_few_shot
from shotcaller.prompts.system_prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

# Overrides where a larger value is stricter
_RAISE_ONLY = ("min_distance", "min_height", "min_framing_margin")
_LOWER_ONLY = ("max_distance", "max_height", "max_speed", "max_angle_change")


@dataclass
class PromptCompilerConfig:
    max_tokens: int = config.DEFAULT_MAX_TOKENS
    temperature: float = config.DEFAULT_TEMPERATURE
    min_duration: float = config.MIN_PATH_DURATION
    max_duration: float = config.MAX_PATH_DURATION
    include_examples: bool = True


def estimate_tokens(*texts: str) -> int:
    return math.ceil(sum(len(t) for t in texts) / 4)


def _vec(v: Vector3) -> str:
    return f"({v.x:.2f}, {v.y:.2f}, {v.z:.2f})"


def tighten_constraints(base: CameraConstraints, overrides: ConstraintOverrides | None) -> CameraConstraints:
    """Apply metadata overrides that narrow the envelope; looser values are ignored."""
    if overrides is None:
        return base
    update = {}
    for name in _RAISE_ONLY:
        value = getattr(overrides, name)
        if value is not None and value > getattr(base, name):
            update[name] = value
    for name in _LOWER_ONLY:
        value = getattr(overrides, name)
        if value is not None and value < getattr(base, name):
            update[name] = value
    if not update:
        return base
    tightened = base.model_copy(update=update)
    if tightened.min_distance > tightened.max_distance or tightened.min_height > tightened.max_height:
        raise PromptCompilationError("Constraint overrides leave an empty camera envelope")
    return tightened


class PromptCompiler:
    def __init__(self, compiler_config: PromptCompilerConfig | None = None):
        self.config = compiler_config or PromptCompilerConfig()

    def initialize(self, compiler_config: PromptCompilerConfig) -> None:
        self.config = compiler_config
        logger.info(f"Prompt compiler initialized (max_tokens={compiler_config.max_tokens})")

    def compile(
        self,
        instruction: str,
        scene: SceneAnalysis,
        environment: EnvironmentalAnalysis,
        metadata: ModelMetadata,
        camera: CameraPose,
        duration: float,
    ) -> CompiledPrompt:
        """Build the system and user messages for one generation attempt.

        Feature points are dropped from the end until the estimated token
        count fits ``max_tokens``; the camera constraints are never dropped.
        """
        instruction = instruction.strip()
        if not instruction:
            raise PromptCompilationError("Instruction is empty")
        if not (self.config.min_duration <= duration <= self.config.max_duration):
            raise PromptCompilationError(
                f"Duration {duration} outside [{self.config.min_duration}, {self.config.max_duration}] seconds"
            )

        env_meta = metadata.environment
        constraints = tighten_constraints(
            environment.camera_constraints, env_meta.constraints if env_meta else None
        )
        user_message = self._user_message(instruction, duration)

        features = list(scene.feature_points)
        include_examples = self.config.include_examples
        while True:
            system_message = self._system_message(
                scene, environment, metadata, constraints, camera, features, include_examples
            )
            token_count = estimate_tokens(system_message, user_message)
            if token_count <= self.config.max_tokens:
                break
            if features:
                features = features[: len(features) // 2]
            elif include_examples:
                include_examples = False
            else:
                raise PromptCompilationError(
                    f"Prompt needs {token_count} tokens, budget is {self.config.max_tokens}"
                )

        if len(features) < len(scene.feature_points):
            logger.info(
                f"Truncated feature points {len(scene.feature_points)} -> {len(features)} to fit token budget"
            )

        return CompiledPrompt(
            system_message=system_message,
            user_message=user_message,
            constraints=constraints,
            current_camera=camera,
            duration=duration,
            model_id=metadata.model_id,
            request_id=str(uuid.uuid4()),
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            token_count=token_count,
        )

    def validate_prompt(self, prompt: CompiledPrompt) -> ValidationResult:
        errors = []
        if not prompt.system_message.strip():
            errors.append("Missing system message")
        if not prompt.user_message.strip():
            errors.append("Missing user message")
        c = prompt.constraints
        if c.min_distance <= 0:
            errors.append("Min distance must be positive")
        if c.min_distance > c.max_distance:
            errors.append("Min distance exceeds max distance")
        if c.min_height > c.max_height:
            errors.append("Min height exceeds max height")
        if c.max_speed <= 0 or c.max_angle_change <= 0:
            errors.append("Speed and angle caps must be positive")
        if not (self.config.min_duration <= prompt.duration <= self.config.max_duration):
            errors.append(f"Duration {prompt.duration} outside allowed range")
        if prompt.token_count > prompt.max_tokens:
            errors.append(f"Token count {prompt.token_count} exceeds budget {prompt.max_tokens}")
        return ValidationResult(is_valid=not errors, errors=errors)

    # ── Message building ────────────────────────────────────────

    @staticmethod
    def _user_message(instruction: str, duration: float) -> str:
        return (
            f"{instruction}\n\n"
            f"Requested duration: {duration:g} seconds. "
            f"The keyframe durations must sum to exactly {duration:g}."
        )

    def _system_message(
        self,
        scene: SceneAnalysis,
        environment: EnvironmentalAnalysis,
        metadata: ModelMetadata,
        constraints: CameraConstraints,
        camera: CameraPose,
        features: list[FeaturePoint],
        include_examples: bool,
    ) -> str:
        d = environment.distances
        lines = [
            SYSTEM_PROMPT,
            "## Scene Context",
            "",
            f"- Object Dimensions: {scene.dimensions.x:.2f} x {scene.dimensions.y:.2f} x {scene.dimensions.z:.2f}",
            f"- Object Center: {_vec(scene.center)}",
            f"- Complexity: {scene.complexity} ({scene.vertex_count} vertices, {scene.face_count} faces)",
            f"- Symmetry planes: {', '.join(scene.symmetry.planes) or 'none'}",
            f"- Dist to Boundary: L:{d.left:.2f} R:{d.right:.2f} F:{d.front:.2f} "
            f"B:{d.back:.2f} T:{d.top:.2f} Bot:{d.bottom:.2f}",
        ]

        env_meta = metadata.environment
        if env_meta is not None:
            lighting = env_meta.lighting
            colors = env_meta.scene
            lines.append(f"- Lighting: Intensity: {lighting.intensity:g}, Color: {lighting.color}")
            lines.append(
                f"- Scene: Background: {colors.background}, Ground: {colors.ground}, "
                f"Atmosphere: {colors.atmosphere}"
            )

        if scene.reference_points is not None:
            r = scene.reference_points
            lines.append(
                f"- Reference Points: highest {_vec(r.highest)}, lowest {_vec(r.lowest)}, "
                f"front {_vec(r.frontmost)}, back {_vec(r.backmost)}"
            )

        if features:
            lines.append("- Feature Points:")
            for f in features:
                label = f" {f.description}" if f.description else ""
                lines.append(f"  - {f.kind}{label} at {_vec(f.position)}")

        lines += [
            "",
            "## Camera Constraints",
            "",
            f"- Min Distance: {constraints.min_distance}",
            f"- Max Distance: {constraints.max_distance}",
            f"- Min Height: {constraints.min_height}",
            f"- Max Height: {constraints.max_height}",
            f"- Max Speed: {constraints.max_speed} units/second",
            f"- Max Angle Change: {constraints.max_angle_change}° per keyframe",
            f"- Min Framing Margin: {constraints.min_framing_margin}",
            "",
            "## Current Camera State",
            "",
            f"- Position: {_vec(camera.position)}",
            f"- Target: {_vec(camera.target)}",
        ]

        prefs = metadata.preferences
        lines += [
            "",
            "## User Preferences",
            "",
            f"- Default Distance: {prefs.default_camera_distance:.2f}",
            f"- Default Height: {prefs.default_camera_height:.2f}",
        ]
        if prefs.preferred_view_angles:
            angles = ", ".join(f"{a:g}°" for a in prefs.preferred_view_angles)
            lines.append(f"- Preferred View Angles: {angles}")

        if include_examples:
            lines += ["", "## Examples", "", format_few_shot()]

        return "\n".join(lines)
