"""Session status machine for generation and playback.

All status changes go through ``transition``; nothing assigns a status
directly.
"""

from typing import Literal

from shotcaller.errors import AnimationError
from shotcaller.models import SessionStatus

Event = Literal["generate", "generated", "fail", "load", "play", "pause", "finish", "seek", "stop", "reset"]

IDLE: SessionStatus = "idle"
GENERATING: SessionStatus = "generating"
READY: SessionStatus = "ready"
PLAYING: SessionStatus = "playing"
PAUSED: SessionStatus = "paused"
COMPLETE: SessionStatus = "complete"

_TRANSITIONS: dict[SessionStatus, dict[str, SessionStatus]] = {
    IDLE: {"generate": GENERATING, "load": READY, "play": PLAYING},
    GENERATING: {"generate": GENERATING, "generated": READY, "fail": IDLE},
    READY: {"generate": GENERATING, "load": READY, "play": PLAYING},
    PLAYING: {"pause": PAUSED, "finish": COMPLETE, "fail": IDLE},
    PAUSED: {"play": PLAYING, "generate": GENERATING, "load": READY},
    COMPLETE: {"play": PLAYING, "seek": PAUSED, "generate": GENERATING, "load": READY},
}


def transition(status: SessionStatus, event: Event, *, has_commands: bool = True) -> SessionStatus:
    """Next status for ``event``; raises AnimationError if it is not allowed."""
    if event in ("stop", "reset"):
        return IDLE
    if event == "play" and not has_commands:
        raise AnimationError("No commands loaded")
    next_status = _TRANSITIONS[status].get(event)
    if next_status is None:
        raise AnimationError(f"Cannot {event} while {status}")
    return next_status


def can(status: SessionStatus, event: Event, *, has_commands: bool = True) -> bool:
    try:
        transition(status, event, has_commands=has_commands)
    except AnimationError:
        return False
    return True
