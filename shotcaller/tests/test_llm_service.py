"""Tests for LLM service (unit tests, no API calls)."""

import asyncio
import json

import pytest

from shotcaller.errors import PathGenerationError
from shotcaller.models import CameraKeyframe, CameraPath, ModelMetadata, PathMetadata, Vector3
from shotcaller.services.llm_service import (
    LLMEngine,
    LLMEngineConfig,
    ResponseCache,
    _build_retry_messages,
    _extract_json,
    _repair_json,
    _suggest_fix,
    parse_path,
    validate_path,
)
from shotcaller.services.prompt_compiler import PromptCompiler


def keyframe(x, y, z, duration, easing=None):
    return {
        "position": {"x": x, "y": y, "z": z},
        "target": {"x": 0.0, "y": 0.0, "z": 0.0},
        "duration": duration,
        **({"easing": easing} if easing else {}),
    }


def fake_engine(responses, **config):
    """Engine whose provider call returns ``responses`` in order."""
    engine = LLMEngine(LLMEngineConfig(**config))
    calls = []

    async def complete(provider, model, system, messages, max_tokens, temperature):
        calls.append(messages)
        response = responses[min(len(calls) - 1, len(responses) - 1)]
        if isinstance(response, Exception):
            raise response
        return response

    engine._complete = complete
    return engine, calls


def make_path(keyframes, constraints, duration=None):
    kfs = [CameraKeyframe.model_validate(k) for k in keyframes]
    return CameraPath(
        keyframes=kfs,
        duration=duration if duration is not None else sum(k.duration for k in kfs),
        metadata=PathMetadata(safety_constraints=constraints),
    )


class TestExtractJson:
    def test_raw_json(self):
        raw = '{"keyframes":[{"duration":1.0}]}'
        assert json.loads(_extract_json(raw))["keyframes"][0]["duration"] == 1.0

    def test_json_with_markdown_fences(self):
        raw = '```json\n{"keyframes":[]}\n```'
        assert json.loads(_extract_json(raw)) == {"keyframes": []}

    def test_json_with_surrounding_text(self):
        raw = 'Here is the path:\n{"keyframes":[{"duration":2}]}\nEnjoy!'
        assert json.loads(_extract_json(raw))["keyframes"][0]["duration"] == 2

    def test_fence_after_prose(self):
        raw = 'Sure!\n```\n{"keyframes":[]}\n```\nAnything else?'
        assert json.loads(_extract_json(raw)) == {"keyframes": []}

    def test_truncated_response_repaired(self):
        raw = '{"keyframes":[{"duration":2}'
        assert json.loads(_extract_json(raw))["keyframes"][0]["duration"] == 2

    def test_no_json_raises(self):
        with pytest.raises(ValueError, match="No JSON"):
            _extract_json("I cannot help with that")


class TestRepairJson:
    def test_complete_json_unchanged(self):
        raw = '{"a":1,"b":2}'
        assert _repair_json(raw) == raw

    def test_missing_closing_bracket_and_brace(self):
        assert json.loads(_repair_json('{"a":[1,2,3')) == {"a": [1, 2, 3]}

    def test_string_braces_ignored(self):
        raw = '{"a":"{{{"}'
        assert _repair_json(raw) == raw


class TestParsePath:
    def test_orbit(self, orbit_response, prompt):
        path = parse_path(orbit_response, prompt)
        assert len(path.keyframes) == 8
        assert path.duration == 10.0
        assert path.model_id == "cube"
        assert path.metadata.safety_constraints == prompt.constraints
        assert path.metadata.style == "orbit"

    def test_durations_rescaled(self, prompt):
        raw = json.dumps({"keyframes": [keyframe(0, 1, 4, 1.0), keyframe(4, 1, 0, 4.0)]})
        path = parse_path(raw, prompt)
        assert [k.duration for k in path.keyframes] == pytest.approx([2.0, 8.0])

    def test_small_mismatch_untouched(self, prompt):
        raw = json.dumps({"keyframes": [keyframe(0, 1, 4, 4.95), keyframe(4, 1, 0, 5.0)]})
        path = parse_path(raw, prompt)
        assert path.keyframes[0].duration == 4.95

    def test_zero_duration_not_rescaled(self, prompt):
        raw = json.dumps({"keyframes": [keyframe(0, 1, 4, 0.0), keyframe(4, 1, 0, 5.0)]})
        path = parse_path(raw, prompt)
        assert path.keyframes[0].duration == 0.0

    def test_list_vectors_accepted(self, prompt):
        raw = json.dumps({"keyframes": [{"position": [0, 1, 4], "target": [0, 0, 0], "duration": 10}]})
        assert parse_path(raw, prompt).keyframes[0].position == Vector3(x=0, y=1, z=4)

    def test_missing_keyframes(self, prompt):
        with pytest.raises(ValueError, match="keyframes"):
            parse_path('{"path": []}', prompt)

    def test_bad_keyframe(self, prompt):
        with pytest.raises(ValueError, match="index 0"):
            parse_path('{"keyframes": [{"position": {"x": 1}}]}', prompt)


class TestValidatePath:
    def test_orbit_is_valid(self, orbit_response, prompt):
        result = validate_path(parse_path(orbit_response, prompt))
        assert result.is_valid, result.errors

    def test_empty_path(self, environment):
        path = CameraPath(keyframes=[], duration=10.0)
        result = validate_path(path)
        assert not result.is_valid

    def test_second_keyframe_below_min_height(self, environment):
        c = environment.camera_constraints
        path = make_path([keyframe(0, 1, 4, 5.0), keyframe(4, -2, 0, 5.0)], c)
        result = validate_path(path)
        assert not result.is_valid
        assert any("Keyframe 1" in e and "below min height" in e for e in result.errors)

    def test_duration_sum_mismatch(self, environment):
        path = make_path([keyframe(0, 1, 4, 3.0)], environment.camera_constraints, duration=10.0)
        result = validate_path(path)
        assert any("sum to" in e for e in result.errors)

    def test_zero_duration(self, environment):
        path = make_path([keyframe(0, 1, 4, 0.0), keyframe(0, 1, 5, 2.0)], environment.camera_constraints)
        assert any("duration must be greater than 0" in e for e in validate_path(path).errors)

    def test_non_finite(self, environment):
        path = make_path([keyframe(float("nan"), 1, 4, 2.0)], environment.camera_constraints)
        assert any("finite" in e for e in validate_path(path).errors)

    def test_too_close(self, environment):
        path = make_path([keyframe(0, 0, 1.5, 2.0)], environment.camera_constraints)
        assert any("below min distance" in e for e in validate_path(path).errors)

    def test_speed_limit(self, environment):
        path = make_path([keyframe(0, 1, 4, 2.0), keyframe(0, 1, -4, 1.0)], environment.camera_constraints)
        assert any("exceeds max speed" in e for e in validate_path(path).errors)

    def test_angle_limit(self, environment):
        path = make_path([keyframe(0, 1, 4, 2.0), keyframe(4, 1, 0, 4.0)], environment.camera_constraints)
        result = validate_path(path)
        assert any("max angle change" in e for e in result.errors)

    def test_without_constraints_only_structure(self):
        path = CameraPath(
            keyframes=[CameraKeyframe.model_validate(keyframe(0, -50, 4, 2.0))],
            duration=2.0,
        )
        assert validate_path(path).is_valid


class TestRetryFeedback:
    def test_suggestions(self):
        hint = _suggest_fix(["Keyframe 1: height -2.00 below min height -1.00"], '{"easing": "easeInOutQaud"}')
        assert "Min Height" in hint
        assert "easeInOutQuad" in hint

    def test_retry_messages(self):
        msgs = _build_retry_messages("orbit", ["Keyframe 1: speed 9.00 exceeds max speed 4.00"], "{}")
        assert [m["role"] for m in msgs] == ["user", "assistant", "user"]
        assert "exceeds max speed" in msgs[2]["content"]


class TestResponseCache:
    def test_lru_eviction(self):
        cache = ResponseCache(ttl=60, max_size=2)
        path = CameraPath(keyframes=[], duration=1.0)
        cache.set("a", path)
        cache.set("b", path)
        cache.get("a")
        cache.set("c", path)
        assert cache.get("b") is None
        assert cache.get("a") is path

    def test_ttl_expiry(self):
        cache = ResponseCache(ttl=-1, max_size=2)
        cache.set("a", CameraPath(keyframes=[], duration=1.0))
        assert cache.get("a") is None

    def test_key_ignores_request_id(self, scene, environment, pose):
        compiler = PromptCompiler()
        a = compiler.compile("orbit", scene, environment, ModelMetadata(model_id="m"), pose, 10.0)
        b = compiler.compile("orbit", scene, environment, ModelMetadata(model_id="m"), pose, 10.0)
        key = ResponseCache.key
        assert key(a.system_message, a.user_message, "claude", "haiku") == \
            key(b.system_message, b.user_message, "claude", "haiku")


class TestGeneratePath:
    def test_orbit_sums_to_duration(self, orbit_response, prompt):
        engine, calls = fake_engine([orbit_response])
        path = asyncio.run(engine.generate_path(prompt))
        assert len(calls) == 1
        assert sum(k.duration for k in path.keyframes) == pytest.approx(10.0, abs=0.1)

    def test_retry_after_invalid_path(self, orbit_response, prompt):
        bad = json.dumps({"keyframes": [keyframe(0, 1, 4, 5.0), keyframe(4, -2, 0, 5.0)]})
        engine, calls = fake_engine([bad, orbit_response])
        path = asyncio.run(engine.generate_path(prompt))
        assert len(calls) == 2
        assert len(path.keyframes) == 8
        assert "below min height" in calls[1][2]["content"]

    def test_invalid_after_all_retries(self, prompt):
        bad = json.dumps({"keyframes": [keyframe(0, 1, 4, 5.0), keyframe(4, -2, 0, 5.0)]})
        engine, calls = fake_engine([bad], max_retries=2)
        with pytest.raises(PathGenerationError) as exc:
            asyncio.run(engine.generate_path(prompt))
        assert len(calls) == 3
        assert any("below min height" in e for e in exc.value.errors)

    def test_unparseable_then_valid(self, orbit_response, prompt):
        engine, calls = fake_engine(["no json here", orbit_response])
        path = asyncio.run(engine.generate_path(prompt))
        assert len(path.keyframes) == 8

    def test_provider_error(self, prompt):
        engine, calls = fake_engine([RuntimeError("connection reset")], max_retries=1)
        with pytest.raises(PathGenerationError, match="connection reset"):
            asyncio.run(engine.generate_path(prompt))
        assert len(calls) == 2

    def test_timeout(self, prompt):
        engine = LLMEngine(LLMEngineConfig(timeout_seconds=0.01))

        async def slow(*args):
            await asyncio.sleep(1)
            return "{}"

        engine._complete = slow
        with pytest.raises(PathGenerationError, match="timed out"):
            asyncio.run(engine.generate_path(prompt))

    def test_cache_hit(self, orbit_response, prompt):
        engine, calls = fake_engine([orbit_response])
        first = asyncio.run(engine.generate_path(prompt))
        second = asyncio.run(engine.generate_path(prompt.model_copy(update={"request_id": "other"})))
        assert len(calls) == 1
        assert first.keyframes == second.keyframes

    def test_unknown_provider(self, prompt):
        engine, _ = fake_engine(["{}"])
        with pytest.raises(ValueError, match="Unknown provider"):
            asyncio.run(engine.generate_path(prompt, provider="openai"))

    def test_path_from_response(self, orbit_response, prompt):
        path = LLMEngine.path_from_response(orbit_response, prompt)
        assert path.duration == 10.0
        with pytest.raises(PathGenerationError):
            LLMEngine.path_from_response("nothing", prompt)


def collect(engine, prompt):
    async def run():
        return [token async for token in engine.stream_path(prompt)]
    return asyncio.run(run())


class TestStreamPath:
    def test_tokens_pass_through(self, prompt):
        engine = LLMEngine()

        async def chunks(provider, model, prompt):
            yield '{"keyframes": '
            yield "[]}"

        engine._stream = chunks
        assert collect(engine, prompt) == ['{"keyframes": ', "[]}"]

    def test_stalled_stream_times_out(self, prompt):
        engine = LLMEngine(LLMEngineConfig(timeout_seconds=0.05))

        async def stalled(provider, model, prompt):
            await asyncio.Event().wait()
            yield "{}"

        engine._stream = stalled
        with pytest.raises(PathGenerationError, match="timed out"):
            collect(engine, prompt)

    def test_deadline_covers_whole_stream(self, prompt):
        engine = LLMEngine(LLMEngineConfig(timeout_seconds=0.2))

        async def trickle(provider, model, prompt):
            while True:
                await asyncio.sleep(0.05)
                yield "{"

        engine._stream = trickle
        with pytest.raises(PathGenerationError, match="timed out"):
            collect(engine, prompt)

    def test_provider_error_wrapped(self, prompt):
        engine = LLMEngine()

        async def broken(provider, model, prompt):
            yield "{"
            raise RuntimeError("stream reset by peer")

        engine._stream = broken
        with pytest.raises(PathGenerationError, match="stream reset by peer"):
            collect(engine, prompt)
