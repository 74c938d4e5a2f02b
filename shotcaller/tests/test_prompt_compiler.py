"""Tests for the prompt compiler (pure, no LLM calls)."""

import pytest
import trimesh

from shotcaller.errors import PromptCompilationError
from shotcaller.models import (
    ConstraintOverrides,
    EnvironmentalMetadata,
    FeaturePoint,
    ModelMetadata,
    UserPreferences,
    Vector3,
)
from shotcaller.services.environment_analyzer import EnvironmentAnalyzer
from shotcaller.services.prompt_compiler import (
    PromptCompiler,
    PromptCompilerConfig,
    estimate_tokens,
    tighten_constraints,
)
from shotcaller.services.scene_analyzer import SceneAnalyzer


def compile_prompt(scene, environment, pose, metadata=None, duration=10.0, compiler=None, instruction="orbit the model"):
    compiler = compiler or PromptCompiler()
    metadata = metadata or ModelMetadata(model_id="cube")
    return compiler.compile(instruction, scene, environment, metadata, pose, duration)


class TestCompile:
    def test_deterministic_except_request_id(self, scene, environment, pose):
        a = compile_prompt(scene, environment, pose)
        b = compile_prompt(scene, environment, pose)
        assert a.request_id != b.request_id
        assert a.model_dump(exclude={"request_id"}) == b.model_dump(exclude={"request_id"})

    def test_constraints_included_verbatim(self, prompt, environment):
        c = environment.camera_constraints
        assert prompt.constraints == c
        lines = prompt.system_message.splitlines()
        assert f"- Min Distance: {c.min_distance}" in lines
        assert f"- Max Height: {c.max_height}" in lines
        assert "- Max Angle Change: 45.0° per keyframe" in lines

    def test_non_round_envelope_not_rounded(self, pose):
        scene = SceneAnalyzer().analyze(trimesh.creation.box(extents=(2.0, 2.469, 2.0)))
        environment = EnvironmentAnalyzer().analyze(scene)
        c = environment.camera_constraints
        prompt = compile_prompt(scene, environment, pose)
        lines = prompt.system_message.splitlines()
        for label, value in [("Min Distance", c.min_distance), ("Max Distance", c.max_distance),
                             ("Min Height", c.min_height), ("Max Height", c.max_height)]:
            assert f"- {label}: {value!r}" in lines
        assert round(c.min_distance, 2) != c.min_distance

    def test_user_message_carries_duration(self, prompt):
        assert prompt.user_message.startswith("orbit the model")
        assert "sum to exactly 10" in prompt.user_message

    def test_current_camera_in_prompt(self, prompt):
        assert "- Position: (0.00, 1.00, 4.00)" in prompt.system_message

    def test_metadata_context(self, scene, environment, pose):
        metadata = ModelMetadata(
            model_id="cube",
            environment=EnvironmentalMetadata(),
            preferences=UserPreferences(preferred_view_angles=[0, 90]),
        )
        prompt = compile_prompt(scene, environment, pose, metadata=metadata)
        assert "- Lighting: Intensity: 1" in prompt.system_message
        assert "- Preferred View Angles: 0°, 90°" in prompt.system_message

    @pytest.mark.parametrize("duration", [0.5, 20.5])
    def test_duration_out_of_range(self, scene, environment, pose, duration):
        with pytest.raises(PromptCompilationError, match="Duration"):
            compile_prompt(scene, environment, pose, duration=duration)

    def test_duration_bounds_inclusive(self, scene, environment, pose):
        assert compile_prompt(scene, environment, pose, duration=1.0).duration == 1.0
        assert compile_prompt(scene, environment, pose, duration=20.0).duration == 20.0

    def test_empty_instruction(self, scene, environment, pose):
        with pytest.raises(PromptCompilationError):
            compile_prompt(scene, environment, pose, instruction="   ")


class TestTokenBudget:
    def test_features_truncated_to_fit(self, scene, environment, pose):
        features = [FeaturePoint(position=Vector3(x=i * 0.01, y=0, z=0)) for i in range(100)]
        crowded = scene.model_copy(update={"feature_points": features})
        compiler = PromptCompiler(PromptCompilerConfig(max_tokens=1600))
        prompt = compile_prompt(crowded, environment, pose, compiler=compiler)
        assert prompt.token_count <= 1600
        assert prompt.system_message.count("  - landmark at") < 100
        assert "- Min Distance:" in prompt.system_message

    def test_impossible_budget(self, scene, environment, pose):
        compiler = PromptCompiler(PromptCompilerConfig(max_tokens=50))
        with pytest.raises(PromptCompilationError, match="budget"):
            compile_prompt(scene, environment, pose, compiler=compiler)

    def test_token_estimate(self):
        assert estimate_tokens("abcd", "efgh") == 2
        assert estimate_tokens("abcde") == 2


class TestOverrides:
    def test_tightening_applied(self, environment):
        base = environment.camera_constraints
        tightened = tighten_constraints(base, ConstraintOverrides(max_distance=5.0, min_height=0.0))
        assert tightened.max_distance == 5.0
        assert tightened.min_height == 0.0

    def test_loosening_ignored(self, environment):
        base = environment.camera_constraints
        result = tighten_constraints(base, ConstraintOverrides(max_distance=100.0, min_distance=0.1, max_speed=50.0))
        assert result == base

    def test_empty_after_overrides(self, environment):
        with pytest.raises(PromptCompilationError):
            tighten_constraints(environment.camera_constraints, ConstraintOverrides(min_distance=9.0))

    def test_overrides_flow_into_prompt(self, scene, environment, pose):
        metadata = ModelMetadata(
            model_id="cube",
            environment=EnvironmentalMetadata(constraints=ConstraintOverrides(max_speed=2.0)),
        )
        prompt = compile_prompt(scene, environment, pose, metadata=metadata)
        assert prompt.constraints.max_speed == 2.0
        assert "- Max Speed: 2.0 units/second" in prompt.system_message


class TestValidatePrompt:
    def test_valid(self, prompt):
        assert PromptCompiler().validate_prompt(prompt).is_valid

    def test_inverted_constraints(self, prompt):
        broken = prompt.model_copy(update={
            "constraints": prompt.constraints.model_copy(update={"min_height": 10.0}),
            "user_message": "",
        })
        result = PromptCompiler().validate_prompt(broken)
        assert not result.is_valid
        assert "Missing user message" in result.errors
        assert "Min height exceeds max height" in result.errors
