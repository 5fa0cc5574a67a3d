"""
resonance.engine.votes — Vote-Mute Tally
=========================================

Members of a voice room can vote to mute someone in it.  A :class:`MuteVote`
holds one poll: the initiator votes yes on creation, everyone else in the
room except the target may vote (and change their vote), and the poll ends
early once its outcome can no longer change.

Threshold: at least half of the eligible voters (everyone in the room but
the target), and never fewer than two yes votes once two or more members
can vote.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from datetime import datetime

from resonance.engine.errors import InvalidInputError

VOTE_SECONDS = 60
DEFAULT_MUTE_MINUTES = 5
MAX_MUTE_MINUTES = 60


class VoteCompletion(enum.StrEnum):
    PENDING = "pending"
    ENOUGH_YES = "enough_yes"
    CANNOT_PASS = "cannot_pass"
    ALL_VOTED = "all_voted"
    EXPIRED = "expired"


def vote_threshold(eligible_voters: int) -> int:
    """Yes votes needed to pass with *eligible_voters* able to vote."""
    half = math.ceil(eligible_voters / 2)
    return max(2, half) if eligible_voters >= 2 else max(1, half)


@dataclass(slots=True)
class MuteVote:
    guild_id: int
    room_channel_id: int
    target_id: int
    initiator_id: int
    reason: str
    eligible_voters: int
    started_at: datetime
    mute_minutes: int = DEFAULT_MUTE_MINUTES
    yes: set[int] = field(default_factory=set)
    no: set[int] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.target_id == self.initiator_id:
            raise InvalidInputError("You cannot start a vote to mute yourself")
        if self.eligible_voters < 1:
            raise InvalidInputError("Nobody else is here to vote")
        if not 1 <= self.mute_minutes <= MAX_MUTE_MINUTES:
            raise InvalidInputError(f"Mute duration must be 1-{MAX_MUTE_MINUTES} minutes")
        self.yes.add(self.initiator_id)

    @property
    def threshold(self) -> int:
        return vote_threshold(self.eligible_voters)

    @property
    def passed(self) -> bool:
        return len(self.yes) >= self.threshold

    @property
    def mute_reason(self) -> str:
        return f"Vote mute ({len(self.yes)} yes, {len(self.no)} no): {self.reason}"

    def cast(self, user_id: int, approve: bool) -> VoteCompletion:
        """Record (or change) *user_id*'s vote and report whether the poll can end."""
        if user_id == self.target_id:
            raise InvalidInputError("You cannot vote in your own mute poll")
        if approve:
            self.yes.add(user_id)
            self.no.discard(user_id)
        else:
            self.no.add(user_id)
            self.yes.discard(user_id)
        return self.completion()

    def completion(self) -> VoteCompletion:
        yes, no = len(self.yes), len(self.no)
        if yes + no >= self.eligible_voters:
            return VoteCompletion.ALL_VOTED
        if yes >= self.threshold:
            return VoteCompletion.ENOUGH_YES
        if yes + (self.eligible_voters - yes - no) < self.threshold:
            return VoteCompletion.CANNOT_PASS
        return VoteCompletion.PENDING
