"""LLM Service - Claude/Gemini API abstraction for camera path generation."""

import asyncio
import difflib
import hashlib
import json
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import AsyncIterator

from pydantic import ValidationError

from shotcaller import config
from shotcaller.easing import EASING_FUNCTIONS
from shotcaller.errors import PathGenerationError
from shotcaller.geometry import EPSILON, angle_between, distance, is_finite, view_direction
from shotcaller.models import (
    CameraKeyframe,
    CameraPath,
    CompiledPrompt,
    PathMetadata,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {"claude": "haiku", "gemini": "flash"}


@dataclass
class LLMEngineConfig:
    provider: str = config.DEFAULT_PROVIDER
    model: str | None = None
    timeout_seconds: float = config.LLM_TIMEOUT_SECONDS
    max_retries: int = config.MAX_RETRIES
    cache_ttl_seconds: float = config.CACHE_TTL_SECONDS
    cache_max_size: int = 256


# ── Response cache (LRU with TTL + maxsize) ─────────────────────


class ResponseCache:
    """Validated paths keyed on prompt content, never on the request id."""

    def __init__(self, ttl: float = config.CACHE_TTL_SECONDS, max_size: int = 256):
        self.ttl = ttl
        self.max_size = max_size
        self._entries: OrderedDict[str, tuple[float, CameraPath]] = OrderedDict()

    @staticmethod
    def key(system_message: str, user_message: str, provider: str, model: str) -> str:
        raw = f"{system_message}|{user_message}|{provider}|{model}"
        return hashlib.sha256(raw.encode()).hexdigest()

    def get(self, key: str) -> CameraPath | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, path = entry
        if time.time() - stored_at > self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return path

    def set(self, key: str, path: CameraPath) -> None:
        self._entries[key] = (time.time(), path)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


# ── JSON extraction ─────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _scan_depth(text: str) -> tuple[int, int, int | None]:
    """Walk ``text`` outside of strings.

    Returns (brace_depth, bracket_depth, end) where ``end`` is the index of
    the brace that closes the first object, or None if it never closes.
    """
    in_string = False
    escape = False
    braces = 0
    brackets = 0
    for i, ch in enumerate(text):
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            braces += 1
        elif ch == "}":
            braces -= 1
            if braces == 0:
                return braces, brackets, i
        elif ch == "[":
            brackets += 1
        elif ch == "]":
            brackets -= 1
    return braces, brackets, None


def _repair_json(text: str) -> str:
    """Append the closing brackets/braces a truncated response is missing."""
    braces, brackets, end = _scan_depth(text)
    if end is not None:
        return text
    if braces > 0 or brackets > 0:
        text += "]" * max(brackets, 0) + "}" * max(braces, 0)
    return text


def _extract_json(text: str) -> str:
    """Pull the first JSON object out of an LLM response.

    Markdown fences and surrounding prose are tolerated; unbalanced nesting
    is repaired when the result parses.
    """
    text = text.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object found in LLM response")

    body = text[start:]
    braces, _, end = _scan_depth(body)
    if end is not None:
        return body[: end + 1]

    repaired = _repair_json(body)
    try:
        json.loads(repaired)
    except json.JSONDecodeError:
        raise ValueError(
            f"Incomplete JSON object in LLM response (depth={braces}, tried repair but failed)"
        )
    return repaired


# ── Parsing and validation ──────────────────────────────────────


def _coerce_vector(value):
    if isinstance(value, (list, tuple)) and len(value) == 3:
        return {"x": value[0], "y": value[1], "z": value[2]}
    return value


def parse_path(text: str, prompt: CompiledPrompt) -> CameraPath:
    """Parse an LLM response into a CameraPath for ``prompt``.

    Keyframe durations that do not sum to the requested duration are
    rescaled proportionally. Raises ValueError on malformed responses.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        data = json.loads(_extract_json(text))

    if not isinstance(data, dict):
        raise ValueError("LLM response is not a JSON object")
    raw_keyframes = data.get("keyframes")
    if not isinstance(raw_keyframes, list) or not raw_keyframes:
        raise ValueError("Missing or empty 'keyframes' array")

    keyframes = []
    for i, kf in enumerate(raw_keyframes):
        if not isinstance(kf, dict):
            raise ValueError(f"Keyframe {i} is not an object")
        try:
            keyframes.append(CameraKeyframe(
                position=_coerce_vector(kf.get("position")),
                target=_coerce_vector(kf.get("target")),
                duration=kf.get("duration"),
                easing=kf.get("easing"),
            ))
        except ValidationError as e:
            raise ValueError(f"Invalid keyframe at index {i}: {e.errors()[0]['msg']}") from e

    keyframes = _rescale_durations(keyframes, prompt.duration)

    meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return CameraPath(
        keyframes=keyframes,
        duration=prompt.duration,
        metadata=PathMetadata(
            style=str(meta.get("style", "smooth")),
            focus=str(meta.get("focus", "model")),
            safety_constraints=prompt.constraints,
        ),
        model_id=prompt.model_id,
    )


def _rescale_durations(keyframes: list[CameraKeyframe], duration: float) -> list[CameraKeyframe]:
    total = sum(kf.duration for kf in keyframes)
    if abs(total - duration) <= config.DURATION_TOLERANCE:
        return keyframes
    if total <= 0 or any(kf.duration <= 0 for kf in keyframes):
        # Non-positive durations are left for validation to reject
        return keyframes
    factor = duration / total
    logger.warning(f"Keyframe durations sum to {total:.3f}s, rescaling to {duration:g}s")
    return [kf.model_copy(update={"duration": kf.duration * factor}) for kf in keyframes]


def validate_path(path: CameraPath) -> ValidationResult:
    """Check a path against its own duration and safety constraints. Pure."""
    errors = []
    keyframes = path.keyframes
    if not keyframes:
        return ValidationResult(is_valid=False, errors=["Path has no keyframes"])
    if path.duration <= 0:
        errors.append(f"Path duration must be positive, got {path.duration}")

    for i, kf in enumerate(keyframes):
        if not kf.duration > 0:
            errors.append(f"Keyframe {i}: duration must be greater than 0")

    total = sum(kf.duration for kf in keyframes)
    if abs(total - path.duration) > config.DURATION_TOLERANCE:
        errors.append(f"Keyframe durations sum to {total:.2f}s, expected {path.duration:.2f}s")

    c = path.metadata.safety_constraints
    for i, kf in enumerate(keyframes):
        position = kf.position.to_array()
        target = kf.target.to_array()
        if not is_finite(position) or not is_finite(target):
            errors.append(f"Keyframe {i}: position and target must be finite")
            continue
        if c is None:
            continue
        height = float(position[1])
        if height < c.min_height - EPSILON:
            errors.append(f"Keyframe {i}: height {height:.2f} below min height {c.min_height:.2f}")
        elif height > c.max_height + EPSILON:
            errors.append(f"Keyframe {i}: height {height:.2f} above max height {c.max_height:.2f}")
        dist = distance(position, target)
        if dist < c.min_distance - EPSILON:
            errors.append(f"Keyframe {i}: distance {dist:.2f} below min distance {c.min_distance:.2f}")
        elif dist > c.max_distance + EPSILON:
            errors.append(f"Keyframe {i}: distance {dist:.2f} above max distance {c.max_distance:.2f}")

    if c is not None:
        for i in range(1, len(keyframes)):
            prev, kf = keyframes[i - 1], keyframes[i]
            if not (is_finite(prev.position.to_array()) and is_finite(kf.position.to_array())):
                continue
            if kf.duration > 0:
                speed = distance(prev.position.to_array(), kf.position.to_array()) / kf.duration
                if speed > c.max_speed + EPSILON:
                    errors.append(f"Keyframe {i}: speed {speed:.2f} exceeds max speed {c.max_speed:.2f}")
            turn = angle_between(
                view_direction(prev.position.to_array(), prev.target.to_array()),
                view_direction(kf.position.to_array(), kf.target.to_array()),
            )
            if turn > c.max_angle_change + 1e-6:
                errors.append(
                    f"Keyframe {i}: view turns {turn:.1f}° exceeding max angle change {c.max_angle_change:.1f}°"
                )

    return ValidationResult(is_valid=not errors, errors=errors)


def _suggest_fix(errors: list[str], raw: str) -> str:
    """Turn validation errors into concrete instructions for the retry."""
    text = " ".join(errors).lower()
    suggestions = []
    if "sum to" in text:
        suggestions.append("Adjust keyframe durations so they add up exactly to the requested duration.")
    if "height" in text:
        suggestions.append("Keep every position.y between Min Height and Max Height.")
    if "distance" in text:
        suggestions.append("Keep the camera-to-target distance between Min Distance and Max Distance.")
    if "speed" in text:
        suggestions.append("Add intermediate keyframes or lengthen durations so the camera moves slower.")
    if "angle" in text:
        suggestions.append("Turn the view more gradually by adding intermediate keyframes.")
    if "finite" in text or "nan" in text:
        suggestions.append("All values must be finite literal numbers.")

    for name in re.findall(r'"easing"\s*:\s*"([^"]+)"', raw):
        if name not in EASING_FUNCTIONS:
            close = difflib.get_close_matches(name, EASING_FUNCTIONS, n=1, cutoff=0.6)
            if close:
                suggestions.append(f"Unknown easing '{name}'. Did you mean: {close[0]}?")
    return " ".join(suggestions)


def _build_retry_messages(user_message: str, errors: list[str], bad_json: str) -> list[dict]:
    """Build messages for retry with error feedback."""
    snippet = bad_json[:500] + "..." if len(bad_json) > 500 else bad_json
    fix_hint = _suggest_fix(errors, bad_json)
    fix_line = f"\n\nSpecific fix: {fix_hint}" if fix_hint else ""
    problems = "\n".join(f"- {e}" for e in errors)
    return [
        {"role": "user", "content": user_message},
        {"role": "assistant", "content": snippet or "(no output)"},
        {"role": "user", "content": (
            f"The camera path you produced violates these constraints:\n{problems}\n\n"
            f"Please output a corrected path. Output ONLY valid JSON.{fix_line}"
        )},
    ]


# ── Engine ──────────────────────────────────────────────────────


class LLMEngine:
    """Generates camera paths from compiled prompts via Claude or Gemini."""

    def __init__(self, engine_config: LLMEngineConfig | None = None):
        self.config = engine_config or LLMEngineConfig()
        self.cache = ResponseCache(self.config.cache_ttl_seconds, self.config.cache_max_size)
        self._claude_client = None
        self._gemini_client = None

    def initialize(self, engine_config: LLMEngineConfig) -> None:
        self.config = engine_config
        self.cache = ResponseCache(engine_config.cache_ttl_seconds, engine_config.cache_max_size)
        logger.info(f"LLM engine initialized (provider={engine_config.provider})")

    def _get_claude_client(self):
        if self._claude_client is None:
            import anthropic
            self._claude_client = anthropic.AsyncAnthropic(api_key=config.ANTHROPIC_API_KEY)
            logger.info("Claude client initialized")
        return self._claude_client

    def _get_gemini_client(self):
        if self._gemini_client is None:
            from google import genai
            self._gemini_client = genai.Client(api_key=config.GOOGLE_API_KEY)
            logger.info("Gemini client initialized")
        return self._gemini_client

    def _resolve(self, provider: str | None, model: str | None) -> tuple[str, str]:
        provider = provider or self.config.provider
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unknown provider: {provider}")
        if model is None and provider == self.config.provider:
            model = self.config.model
        return provider, model or DEFAULT_MODELS[provider]

    @staticmethod
    def _gemini_prompt(system: str, messages: list[dict]) -> str:
        full_prompt = system + "\n\n"
        for msg in messages:
            role = "User" if msg["role"] == "user" else "Assistant"
            full_prompt += f"{role}: {msg['content']}\n"
        return full_prompt + "Assistant:"

    async def _complete(
        self,
        provider: str,
        model: str,
        system: str,
        messages: list[dict],
        max_tokens: int,
        temperature: float,
    ) -> str:
        """One raw completion from the provider."""
        if provider == "claude":
            client = self._get_claude_client()
            response = await client.messages.create(
                model=config.CLAUDE_MODELS.get(model, model),
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=messages,
            )
            return response.content[0].text

        client = self._get_gemini_client()
        response = await client.aio.models.generate_content(
            model=config.GEMINI_MODELS.get(model, model),
            contents=self._gemini_prompt(system, messages),
            config={
                "max_output_tokens": max_tokens,
                "temperature": temperature,
                "response_mime_type": "application/json",
            },
        )
        return response.text or ""

    async def generate_path(
        self,
        prompt: CompiledPrompt,
        provider: str | None = None,
        model: str | None = None,
    ) -> CameraPath:
        """Generate and validate a camera path, retrying with error feedback.

        Raises PathGenerationError on timeout, provider failure, or when the
        path is still invalid after the last retry.
        """
        provider, model = self._resolve(provider, model)
        retries = self.config.max_retries

        key = self.cache.key(prompt.system_message, prompt.user_message, provider, model)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for instruction: {prompt.user_message[:50]}...")
            return cached.model_copy(update={"model_id": prompt.model_id})

        messages = [{"role": "user", "content": prompt.user_message}]
        last_errors: list[str] = []
        raw = ""
        t0 = time.perf_counter()

        for attempt in range(1 + retries):
            if attempt > 0:
                logger.info(f"Retry {attempt}/{retries}: {'; '.join(last_errors)}")
                messages = _build_retry_messages(prompt.user_message, last_errors, raw)

            try:
                raw = await asyncio.wait_for(
                    self._complete(
                        provider, model, prompt.system_message, messages,
                        prompt.max_tokens, prompt.temperature,
                    ),
                    timeout=self.config.timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise PathGenerationError(
                    f"LLM call timed out after {self.config.timeout_seconds:g}s"
                ) from e
            except Exception as e:
                err_str = str(e)
                last_errors = [err_str]
                if attempt >= retries:
                    raise PathGenerationError(f"LLM call failed: {err_str}", errors=last_errors) from e
                if "429" in err_str:
                    delay_match = re.search(r"retry in (\d+(?:\.\d+)?)s", err_str, re.IGNORECASE)
                    wait_sec = float(delay_match.group(1)) if delay_match else 30.0
                    logger.info(f"Rate limited, waiting {wait_sec:.0f}s before retry...")
                    await asyncio.sleep(wait_sec)
                else:
                    logger.warning(f"Generation failed (attempt {attempt + 1}): {e}")
                continue

            try:
                path = parse_path(raw, prompt)
            except ValueError as e:
                last_errors = [str(e)]
                logger.warning(f"Unparseable response (attempt {attempt + 1}): {e}")
                continue

            result = validate_path(path)
            if result.is_valid:
                elapsed = round(time.perf_counter() - t0, 3)
                logger.info(
                    f"Generated path with {len(path.keyframes)} keyframes in {elapsed}s "
                    f"(provider={provider}, retries={attempt})"
                )
                self.cache.set(key, path)
                return path

            last_errors = result.errors
            logger.warning(f"Path validation failed (attempt {attempt + 1}): {'; '.join(result.errors)}")

        raise PathGenerationError(
            f"No valid path after {retries} retries: {'; '.join(last_errors)}",
            errors=last_errors,
        )

    async def stream_path(
        self,
        prompt: CompiledPrompt,
        provider: str | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream raw response tokens; pass the joined text to ``path_from_response``.

        The whole stream shares one ``timeout_seconds`` deadline. A stalled or
        failing provider raises PathGenerationError.
        """
        provider, model = self._resolve(provider, model)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.timeout_seconds
        tokens = self._stream(provider, model, prompt)
        try:
            while True:
                try:
                    text = await asyncio.wait_for(anext(tokens), timeout=max(0.0, deadline - loop.time()))
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as e:
                    raise PathGenerationError(
                        f"LLM stream timed out after {self.config.timeout_seconds:g}s"
                    ) from e
                except Exception as e:
                    raise PathGenerationError(f"LLM stream failed: {e}", errors=[str(e)]) from e
                yield text
        finally:
            await tokens.aclose()

    async def _stream(self, provider: str, model: str, prompt: CompiledPrompt) -> AsyncIterator[str]:
        messages = [{"role": "user", "content": prompt.user_message}]

        if provider == "claude":
            client = self._get_claude_client()
            async with client.messages.stream(
                model=config.CLAUDE_MODELS.get(model, model),
                max_tokens=prompt.max_tokens,
                temperature=prompt.temperature,
                system=prompt.system_message,
                messages=messages,
            ) as stream:
                async for text in stream.text_stream:
                    yield text
            return

        client = self._get_gemini_client()
        async for chunk in await client.aio.models.generate_content_stream(
            model=config.GEMINI_MODELS.get(model, model),
            contents=self._gemini_prompt(prompt.system_message, messages),
            config={"max_output_tokens": prompt.max_tokens, "temperature": prompt.temperature},
        ):
            if chunk.text:
                yield chunk.text

    @staticmethod
    def path_from_response(raw: str, prompt: CompiledPrompt) -> CameraPath:
        """Parse and validate a complete streamed response."""
        try:
            path = parse_path(raw, prompt)
        except ValueError as e:
            raise PathGenerationError(str(e), errors=[str(e)]) from e
        result = validate_path(path)
        if not result.is_valid:
            raise PathGenerationError("Generated path failed validation", errors=result.errors)
        return path

    def cache_clear(self) -> int:
        return self.cache.clear()
