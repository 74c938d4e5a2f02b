"""Named easing functions (d3-ease naming) for camera segments.

Every function maps local segment progress ``t`` in [0, 1] to eased progress.
Back and elastic variants overshoot outside [0, 1]; commands clamp the
resulting pose into the safety envelope.
"""

import logging
import math
from typing import Callable

logger = logging.getLogger(__name__)

EasingFunction = Callable[[float], float]

DEFAULT_EASING = "linear"

_BACK_OVERSHOOT = 1.70158
_ELASTIC_AMPLITUDE = 1.0
_ELASTIC_PERIOD = 0.3 / (2 * math.pi)
_ELASTIC_SHIFT = math.asin(1 / _ELASTIC_AMPLITUDE) * _ELASTIC_PERIOD

_B1, _B2, _B3 = 4 / 11, 6 / 11, 8 / 11
_B4, _B5, _B6 = 3 / 4, 9 / 11, 10 / 11
_B7, _B8, _B9 = 15 / 16, 21 / 22, 63 / 64
_B0 = 1 / _B1 / _B1


def _tpmt(x: float) -> float:
    # 2^(-10x) rescaled so that tpmt(0) == 1 and tpmt(1) == 0
    return (math.pow(2, -10 * x) - 0.0009765625) * 1.0009775171065494


def linear(t: float) -> float:
    return t


def quad_in(t: float) -> float:
    return t * t


def quad_out(t: float) -> float:
    return t * (2 - t)


def quad_in_out(t: float) -> float:
    t *= 2
    if t <= 1:
        return t * t / 2
    t -= 1
    return (t * (2 - t) + 1) / 2


def cubic_in(t: float) -> float:
    return t * t * t


def cubic_out(t: float) -> float:
    t -= 1
    return t * t * t + 1


def cubic_in_out(t: float) -> float:
    t *= 2
    if t <= 1:
        return t * t * t / 2
    t -= 2
    return (t * t * t + 2) / 2


def exp_in(t: float) -> float:
    return _tpmt(1 - t)


def exp_out(t: float) -> float:
    return 1 - _tpmt(t)


def exp_in_out(t: float) -> float:
    t *= 2
    if t <= 1:
        return _tpmt(1 - t) / 2
    return (2 - _tpmt(t - 1)) / 2


def circle_in(t: float) -> float:
    return 1 - math.sqrt(max(0.0, 1 - t * t))


def circle_out(t: float) -> float:
    t -= 1
    return math.sqrt(max(0.0, 1 - t * t))


def circle_in_out(t: float) -> float:
    t *= 2
    if t <= 1:
        return (1 - math.sqrt(max(0.0, 1 - t * t))) / 2
    t -= 2
    return (math.sqrt(max(0.0, 1 - t * t)) + 1) / 2


def back_in(t: float) -> float:
    s = _BACK_OVERSHOOT
    return t * t * (s * (t - 1) + t)


def back_out(t: float) -> float:
    s = _BACK_OVERSHOOT
    t -= 1
    return t * t * ((t + 1) * s + t) + 1


def back_in_out(t: float) -> float:
    s = _BACK_OVERSHOOT
    t *= 2
    if t < 1:
        return t * t * ((s + 1) * t - s) / 2
    t -= 2
    return (t * t * ((s + 1) * t + s) + 2) / 2


def elastic_in(t: float) -> float:
    t -= 1
    return _ELASTIC_AMPLITUDE * _tpmt(-t) * math.sin((_ELASTIC_SHIFT - t) / _ELASTIC_PERIOD)


def elastic_out(t: float) -> float:
    return 1 - _ELASTIC_AMPLITUDE * _tpmt(t) * math.sin((t + _ELASTIC_SHIFT) / _ELASTIC_PERIOD)


def elastic_in_out(t: float) -> float:
    t = t * 2 - 1
    if t < 0:
        return _ELASTIC_AMPLITUDE * _tpmt(-t) * math.sin((_ELASTIC_SHIFT - t) / _ELASTIC_PERIOD) / 2
    return (2 - _ELASTIC_AMPLITUDE * _tpmt(t) * math.sin((_ELASTIC_SHIFT + t) / _ELASTIC_PERIOD)) / 2


def bounce_out(t: float) -> float:
    if t < _B1:
        return _B0 * t * t
    if t < _B3:
        t -= _B2
        return _B0 * t * t + _B4
    if t < _B6:
        t -= _B5
        return _B0 * t * t + _B7
    t -= _B8
    return _B0 * t * t + _B9


def bounce_in(t: float) -> float:
    return 1 - bounce_out(1 - t)


def bounce_in_out(t: float) -> float:
    t *= 2
    if t <= 1:
        return (1 - bounce_out(1 - t)) / 2
    return (bounce_out(t - 1) + 1) / 2


EASING_FUNCTIONS: dict[str, EasingFunction] = {
    "linear": linear,
    "easeInQuad": quad_in,
    "easeOutQuad": quad_out,
    "easeInOutQuad": quad_in_out,
    "easeInCubic": cubic_in,
    "easeOutCubic": cubic_out,
    "easeInOutCubic": cubic_in_out,
    "easeInExpo": exp_in,
    "easeOutExpo": exp_out,
    "easeInOutExpo": exp_in_out,
    "easeInCircle": circle_in,
    "easeOutCircle": circle_out,
    "easeInOutCircle": circle_in_out,
    "easeInBack": back_in,
    "easeOutBack": back_out,
    "easeInOutBack": back_in_out,
    "easeInElastic": elastic_in,
    "easeOutElastic": elastic_out,
    "easeInOutElastic": elastic_in_out,
    "easeInBounce": bounce_in,
    "easeOutBounce": bounce_out,
    "easeInOutBounce": bounce_in_out,
}

# Loose spellings LLMs tend to produce
_ALIASES = {
    "easein": "easeInQuad",
    "easeout": "easeOutQuad",
    "easeinout": "easeInOutQuad",
    "smooth": "easeInOutCubic",
}

_NORMALIZED = {name.lower(): name for name in EASING_FUNCTIONS}


def _normalize(name: str) -> str:
    return name.replace("-", "").replace("_", "").replace(" ", "").lower()


def resolve_easing_name(name: str | None) -> str:
    """Return the canonical easing name, or ``linear`` when unrecognized."""
    if not name:
        return DEFAULT_EASING
    if name in EASING_FUNCTIONS:
        return name
    key = _normalize(name)
    canonical = _NORMALIZED.get(key) or _ALIASES.get(key)
    if canonical is None:
        logger.debug(f"Unknown easing '{name}', falling back to {DEFAULT_EASING}")
        return DEFAULT_EASING
    return canonical


def resolve_easing(name: str | None) -> EasingFunction:
    """Look up an easing function by name. Never raises."""
    return EASING_FUNCTIONS[resolve_easing_name(name)]
