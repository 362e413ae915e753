from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .history import build_history_index

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    id: str
    username: str = ""
    display_name: str | None = None
    connections: list[str] = field(default_factory=list)
    blocked_ids: list[str] = field(default_factory=list)
    flake_streak: int = 0
    max_flake_streak: int = 0
    priority_next_pairing: bool = False
    waitlisted_today: bool = False


@dataclass
class PairingResult:
    pairs: list[tuple[Participant, Participant]]
    waitlist: list[Participant]


@dataclass
class MatchState:
    """Working set for a single matching run."""

    pool: list[Participant]
    by_id: dict[str, Participant]
    history: dict[str, set[str]]
    rng: random.Random
    claimed: set[str] = field(default_factory=set)

    def claim(self, *participants: Participant) -> None:
        for p in participants:
            self.claimed.add(p.id)


MatchAttempt = Callable[[Participant, MatchState], Optional[Participant]]


def is_blocked_pair(a: Participant, b: Participant) -> bool:
    return b.id in (a.blocked_ids or []) or a.id in (b.blocked_ids or [])


def can_pair(current: Participant, candidate: Participant, state: MatchState) -> bool:
    if candidate.id == current.id:
        return False
    if candidate.id in state.claimed:
        return False
    if is_blocked_pair(current, candidate):
        return False
    if candidate.id in state.history.get(current.id, ()):
        return False
    return True


def shuffle_candidates(items: list[Any], rng: random.Random) -> list[Any]:
    # random.shuffle is an in-place Fisher-Yates shuffle.
    out = list(items)
    rng.shuffle(out)
    return out


def try_friend_match(current: Participant, state: MatchState) -> Participant | None:
    friend_ids = [fid for fid in dict.fromkeys(current.connections or []) if fid in state.by_id]
    for fid in shuffle_candidates(friend_ids, state.rng):
        friend = state.by_id[fid]
        if can_pair(current, friend, state):
            return friend
    return None


def try_general_match(current: Participant, state: MatchState) -> Participant | None:
    for candidate in state.pool:
        if can_pair(current, candidate, state):
            return candidate
    return None


MATCH_ATTEMPTS: tuple[MatchAttempt, ...] = (try_friend_match, try_general_match)


def find_partner(current: Participant, state: MatchState, attempts: Iterable[MatchAttempt] = MATCH_ATTEMPTS) -> Participant | None:
    for attempt in attempts:
        partner = attempt(current, state)
        if partner is not None:
            logger.debug("%s paired with %s via %s", current.id, partner.id, attempt.__name__)
            return partner
    return None


def order_by_priority(participants: Iterable[Participant]) -> list[Participant]:
    # sorted() is stable, so non-priority ties keep their input order.
    return sorted(participants, key=lambda p: not p.priority_next_pairing)


def create_pairings(
    participants: list[Participant],
    recent_history: Iterable[Any],
    *,
    rng: random.Random | None = None,
) -> PairingResult:
    """Partition eligible participants into disjoint pairs plus a waitlist.

    Each participant, in priority order, first tries a shuffled scan of
    their connections and then a scan of the whole pool. Candidates that are
    already claimed, blocked in either direction, or paired with the
    participant inside the history window are skipped. Whoever finds no
    partner lands on the waitlist.
    """
    ordered = order_by_priority(participants)
    state = MatchState(
        pool=ordered,
        by_id={p.id: p for p in ordered},
        history=build_history_index(recent_history),
        rng=rng or random.Random(),
    )

    pairs: list[tuple[Participant, Participant]] = []
    waitlist: list[Participant] = []
    for current in ordered:
        if current.id in state.claimed:
            continue
        partner = find_partner(current, state)
        if partner is None:
            waitlist.append(current)
            # Waitlisted participants are never offered as candidates later.
            state.claim(current)
            continue
        state.claim(current, partner)
        pairs.append((current, partner))

    logger.debug("create_pairings pool=%s pairs=%s waitlist=%s", len(ordered), len(pairs), len(waitlist))
    return PairingResult(pairs=pairs, waitlist=waitlist)
