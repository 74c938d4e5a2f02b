"""Few-shot examples for LLM camera path generation.

All examples assume a 2x2x2 object centered at the origin with the camera
starting at (0, 1, 4) looking at the origin.
"""

import json


def _kf(x, y, z, duration, easing=None, target=(0.0, 0.0, 0.0)):
    keyframe = {
        "position": {"x": x, "y": y, "z": z},
        "target": {"x": target[0], "y": target[1], "z": target[2]},
        "duration": duration,
    }
    if easing:
        keyframe["easing"] = easing
    return keyframe


EXAMPLES = [
    {
        "prompt": "Orbit the model once (10 seconds)",
        "path_json": json.dumps({
            "keyframes": [
                _kf(2.828, 1.0, 2.828, 1.25),
                _kf(4.0, 1.0, 0.0, 1.25),
                _kf(2.828, 1.0, -2.828, 1.25),
                _kf(0.0, 1.0, -4.0, 1.25),
                _kf(-2.828, 1.0, -2.828, 1.25),
                _kf(-4.0, 1.0, 0.0, 1.25),
                _kf(-2.828, 1.0, 2.828, 1.25),
                _kf(0.0, 1.0, 4.0, 1.25),
            ],
            "metadata": {"style": "orbit", "focus": "model"},
        }),
    },
    {
        "prompt": "Start close on the front, then slowly pull back to reveal the whole model (6 seconds)",
        "path_json": json.dumps({
            "keyframes": [
                _kf(0.0, 0.5, 2.5, 2.0, "easeOutQuad"),
                _kf(0.0, 1.5, 5.0, 2.0, "easeInOutQuad"),
                _kf(0.0, 2.5, 7.0, 2.0, "easeInOutCubic"),
            ],
            "metadata": {"style": "reveal", "focus": "front"},
        }),
    },
    {
        "prompt": "Fly over the top from front to back (8 seconds)",
        "path_json": json.dumps({
            "keyframes": [
                _kf(0.0, 2.5, 4.0, 1.6, "easeInQuad"),
                _kf(0.0, 2.8, 1.5, 1.6),
                _kf(0.0, 2.8, 0.0, 1.6),
                _kf(0.0, 2.8, -1.5, 1.6),
                _kf(0.0, 2.5, -4.0, 1.6, "easeOutQuad"),
            ],
            "metadata": {"style": "flyover", "focus": "top"},
        }),
    },
]


def format_few_shot() -> str:
    """Format examples as few-shot prompt text."""
    parts = []
    for ex in EXAMPLES:
        parts.append(f"User: {ex['prompt']}\nAssistant: {ex['path_json']}")
    return "\n\n".join(parts)
