"""
resonance.engine.presence — Voice Transition Classification
============================================================

A member's voice presence is a two-state machine per guild:

    Idle ──join──▶ Active(c) ──switch──▶ Active(c′)
      ▲                │
      └─────leave──────┘

Discord reports every voice-state change as a *(before, after)* pair of
channels.  :func:`classify_voice_update` reduces that pair to one
:class:`TransitionKind`; mute/deafen/stream toggles inside the same channel
classify as ``NONE`` and never touch session state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class TransitionKind(enum.StrEnum):
    JOIN = "join"
    LEAVE = "leave"
    SWITCH = "switch"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class VoiceChannelRef:
    """The bits of a voice channel the tracker records."""

    channel_id: int
    name: str = ""


def classify_voice_update(
    before_channel_id: int | None,
    after_channel_id: int | None,
) -> TransitionKind:
    if before_channel_id == after_channel_id:
        return TransitionKind.NONE
    if before_channel_id is None:
        return TransitionKind.JOIN
    if after_channel_id is None:
        return TransitionKind.LEAVE
    return TransitionKind.SWITCH
