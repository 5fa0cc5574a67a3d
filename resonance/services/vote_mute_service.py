"""
resonance.services.vote_mute_service — Room Vote-Mutes
=======================================================

Open polls live in memory (one per room) and disappear when they end or the
bot restarts.  A poll that passes becomes an ordinary ``MUTED`` marker via
:func:`resonance.services.moderation_service.set_state`, applied by the
member who started the vote.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from resonance.database.models import ModerationStateKind, RoomModerationState
from resonance.engine.errors import InvalidInputError
from resonance.engine.timekeeping import ensure_utc, utc_now
from resonance.engine.votes import DEFAULT_MUTE_MINUTES, MuteVote, VoteCompletion
from resonance.services.moderation_service import has_state, set_state

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class VoteMuteRegistry:
    """Active mute polls keyed by ``(guild_id, room_channel_id)``."""

    def __init__(self) -> None:
        self._votes: dict[tuple[int, int], MuteVote] = {}

    def __len__(self) -> int:
        return len(self._votes)

    def get(self, guild_id: int, room_channel_id: int) -> MuteVote | None:
        return self._votes.get((guild_id, room_channel_id))

    def start(
        self,
        engine: Engine,
        *,
        guild_id: int,
        room_channel_id: int,
        target_id: int,
        initiator_id: int,
        eligible_voters: int,
        reason: str | None = None,
        mute_minutes: int = DEFAULT_MUTE_MINUTES,
        now: datetime | None = None,
    ) -> MuteVote:
        key = (guild_id, room_channel_id)
        if key in self._votes:
            raise InvalidInputError("There is already an active vote in this room")
        if has_state(
            engine,
            guild_id=guild_id,
            room_channel_id=room_channel_id,
            user_id=target_id,
            state_kind=ModerationStateKind.MUTED,
        ):
            raise InvalidInputError("That member is already muted in this room")

        vote = MuteVote(
            guild_id=guild_id,
            room_channel_id=room_channel_id,
            target_id=target_id,
            initiator_id=initiator_id,
            reason=(reason or "").strip() or "No reason provided",
            eligible_voters=eligible_voters,
            started_at=ensure_utc(now) or utc_now(),
            mute_minutes=mute_minutes,
        )
        self._votes[key] = vote
        logger.info(
            "Vote-mute started in room %s: target=%s by %s (%d eligible)",
            room_channel_id, target_id, initiator_id, eligible_voters,
        )
        return vote

    def cast(
        self, guild_id: int, room_channel_id: int, user_id: int, approve: bool,
    ) -> tuple[MuteVote, VoteCompletion]:
        vote = self.get(guild_id, room_channel_id)
        if vote is None:
            raise InvalidInputError("This vote has already ended")
        return vote, vote.cast(user_id, approve)

    def finish(self, guild_id: int, room_channel_id: int) -> MuteVote | None:
        """Close the room's poll; ``None`` when it was already closed."""
        return self._votes.pop((guild_id, room_channel_id), None)


def apply_vote_result(
    engine: Engine,
    vote: MuteVote,
    *,
    now: datetime | None = None,
) -> RoomModerationState | None:
    """Record the mute for a passed vote; failed votes write nothing."""
    if not vote.passed:
        logger.info(
            "Vote-mute failed in room %s: %d yes / %d no (needed %d)",
            vote.room_channel_id, len(vote.yes), len(vote.no), vote.threshold,
        )
        return None
    return set_state(
        engine,
        guild_id=vote.guild_id,
        room_channel_id=vote.room_channel_id,
        user_id=vote.target_id,
        state_kind=ModerationStateKind.MUTED,
        applied_by=vote.initiator_id,
        reason=vote.mute_reason,
        now=now,
    )
