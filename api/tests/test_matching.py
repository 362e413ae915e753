import random
from datetime import date

from dailymeetup.services.matching import (
    Participant,
    can_pair,
    create_pairings,
    MatchState,
    order_by_priority,
    try_friend_match,
)


def _p(pid: str, **kwargs) -> Participant:
    return Participant(id=pid, username=pid, **kwargs)


def _paired_ids(result) -> list[str]:
    return [p.id for pair in result.pairs for p in pair]


def _pair_sets(result) -> set[frozenset]:
    return {frozenset((a.id, b.id)) for a, b in result.pairs}


def _random_pool(rng: random.Random, n: int) -> tuple[list[Participant], list[tuple[str, str, date]]]:
    ids = [f"u{i:02d}" for i in range(n)]
    people = []
    for pid in ids:
        others = [o for o in ids if o != pid]
        people.append(
            _p(
                pid,
                connections=rng.sample(others, k=min(len(others), rng.randint(0, 3))),
                blocked_ids=rng.sample(others, k=min(len(others), rng.randint(0, 2))),
                priority_next_pairing=rng.random() < 0.2,
            )
        )
    history = []
    for _ in range(n if n > 1 else 0):
        a, b = rng.sample(ids, 2)
        history.append((a, b, date(2026, 3, rng.randint(3, 9))))
    return people, history


def test_random_pools_keep_core_invariants():
    for seed in range(40):
        rng = random.Random(seed)
        people, history = _random_pool(rng, rng.randint(0, 15))
        by_id = {p.id: p for p in people}
        result = create_pairings(people, history, rng=random.Random(seed))

        paired = _paired_ids(result)
        waitlisted = [p.id for p in result.waitlist]
        assert len(paired) == len(set(paired))
        assert not set(paired) & set(waitlisted)
        assert sorted(paired + waitlisted) == sorted(by_id)

        history_pairs = {frozenset((a, b)) for a, b, _ in history}
        for a, b in result.pairs:
            assert b.id not in by_id[a.id].blocked_ids
            assert a.id not in by_id[b.id].blocked_ids
            assert frozenset((a.id, b.id)) not in history_pairs


def test_odd_pool_leaves_exactly_one_waitlisted():
    result = create_pairings([_p("a"), _p("b"), _p("c")], [], rng=random.Random(1))
    assert len(result.pairs) == 1
    assert len(result.waitlist) == 1


def test_priority_participant_is_never_left_behind():
    people = [_p("a"), _p("b"), _p("c"), _p("d", priority_next_pairing=True)]
    result = create_pairings(people, [], rng=random.Random(3))
    assert "d" in _paired_ids(result)
    assert result.waitlist == []

    odd = [_p("a"), _p("b"), _p("c", priority_next_pairing=True)]
    result = create_pairings(odd, [], rng=random.Random(3))
    assert "c" in _paired_ids(result)
    assert [p.id for p in result.waitlist] == ["b"]


def test_order_by_priority_is_stable():
    people = [_p("a"), _p("b", priority_next_pairing=True), _p("c"), _p("d", priority_next_pairing=True)]
    assert [p.id for p in order_by_priority(people)] == ["b", "d", "a", "c"]


def test_friend_pairs_first_and_history_blocks_repeat():
    people = [
        _p("A", connections=["B"]),
        _p("B", connections=["A"]),
        _p("C"),
        _p("D"),
    ]
    history = [("A", "C", date(2026, 3, 8))]
    for seed in range(10):
        result = create_pairings(people, history, rng=random.Random(seed))
        pairs = _pair_sets(result)
        assert frozenset(("A", "B")) in pairs
        assert frozenset(("A", "C")) not in pairs


def test_history_is_symmetric():
    people = [_p("x"), _p("y")]
    result = create_pairings(people, [("y", "x", date(2026, 3, 9))], rng=random.Random(0))
    assert result.pairs == []
    assert {p.id for p in result.waitlist} == {"x", "y"}


def test_block_in_one_direction_prevents_pair():
    people = [_p("x", blocked_ids=["y"]), _p("y")]
    result = create_pairings(people, [], rng=random.Random(0))
    assert result.pairs == []


def test_participant_without_options_is_waitlisted():
    people = [_p("a", blocked_ids=["b"]), _p("b"), _p("c")]
    result = create_pairings(people, [("a", "c", date(2026, 3, 9))], rng=random.Random(0))
    assert [p.id for p in result.waitlist] == ["a"]
    assert _pair_sets(result) == {frozenset(("b", "c"))}


def test_seeded_runs_are_deterministic():
    people = [_p(f"u{i}", connections=[f"u{(i + 1) % 8}", f"u{(i + 3) % 8}"]) for i in range(8)]
    first = create_pairings(people, [], rng=random.Random(42))
    second = create_pairings(people, [], rng=random.Random(42))
    assert _pair_sets(first) == _pair_sets(second)


def test_self_connection_and_unknown_friend_are_ignored():
    people = [_p("a", connections=["a", "ghost", "b"]), _p("b")]
    result = create_pairings(people, [], rng=random.Random(0))
    assert _pair_sets(result) == {frozenset(("a", "b"))}


def test_can_pair_rejects_claimed_candidates():
    a, b = _p("a"), _p("b")
    state = MatchState(pool=[a, b], by_id={"a": a, "b": b}, history={}, rng=random.Random(0))
    assert can_pair(a, b, state)
    state.claim(b)
    assert not can_pair(a, b, state)
    assert try_friend_match(_p("a", connections=["b"]), state) is None


def test_empty_pool():
    result = create_pairings([], [], rng=random.Random(0))
    assert result.pairs == []
    assert result.waitlist == []
