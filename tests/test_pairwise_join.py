import threading

import pytest
from joinpipe.exceptions import MalformedEventError, StateStoreError
from joinpipe.join.pairwise import PairwiseJoin, interleave, join_stream
from joinpipe.join.state_store import InMemoryStateStore, StateStore
from joinpipe.message.events import (
    EMPTY,
    WAITING_A,
    WAITING_B,
    JoinedPair,
    PrimaryEvent,
    SecondaryEvent,
)


@pytest.fixture(scope="function")
def emitted():
    return []


@pytest.fixture(scope="function")
def join(emitted):
    join = PairwiseJoin(emit=emitted.append)
    join.open()
    return join


def ride(key, payload=None):
    return PrimaryEvent(key, payload or "ride-{key}".format(key=key))


def fare(key, payload=None):
    return SecondaryEvent(key, payload or "fare-{key}".format(key=key))


def test_primary_then_secondary(join, emitted):
    assert join.on_primary_event(ride(1)) is None
    assert join.state_of(1) == WAITING_A
    pair = join.on_secondary_event(fare(1))
    assert pair == JoinedPair(ride(1), fare(1))
    assert emitted == [pair]
    assert join.state_of(1) == EMPTY


def test_secondary_then_primary(join, emitted):
    assert join.on_secondary_event(fare(2)) is None
    assert join.state_of(2) == WAITING_B
    pair = join.on_primary_event(ride(2))
    assert pair.primary == ride(2)
    assert pair.secondary == fare(2)
    assert emitted == [pair]
    assert join.state_of(2) == EMPTY


def test_order_independence():
    forward = list(join_stream([ride(7), fare(7)]))
    backward = list(join_stream([fare(7), ride(7)]))
    assert forward == backward == [JoinedPair(ride(7), fare(7))]


def test_second_primary_overwrites_first(join, emitted):
    join.on_primary_event(ride(3, "ride-3a"))
    join.on_primary_event(ride(3, "ride-3b"))
    assert emitted == []
    assert join.pending(3) == ride(3, "ride-3b")
    pair = join.on_secondary_event(fare(3))
    assert emitted == [JoinedPair(ride(3, "ride-3b"), fare(3))]
    assert pair.primary.payload == "ride-3b"
    assert join.events_overwritten == 1


def test_second_secondary_overwrites_first(join, emitted):
    join.on_secondary_event(fare(3, "fare-3a"))
    join.on_secondary_event(fare(3, "fare-3b"))
    join.on_primary_event(ride(3))
    assert emitted == [JoinedPair(ride(3), fare(3, "fare-3b"))]


def test_unmatched_primary_waits(join, emitted):
    join.on_primary_event(ride(4))
    join.on_secondary_event(fare(40))
    assert emitted == []
    assert join.state_of(4) == WAITING_A
    assert join.state_of(40) == WAITING_B
    assert join.pending_count() == 2


def test_interleaved_keys(join, emitted):
    join.on_primary_event(ride(5))
    join.on_primary_event(ride(6))
    join.on_secondary_event(fare(6))
    join.on_secondary_event(fare(5))
    assert emitted == [
        JoinedPair(ride(6), fare(6)),
        JoinedPair(ride(5), fare(5)),
    ]
    assert join.pending_count() == 0


def test_key_isolation_matches_separate_processing():
    events = [ride(1), fare(2), ride(2), ride(3), fare(1), fare(3)]
    together = set(join_stream(events))
    separately = set()
    for key in (1, 2, 3):
        separately |= set(
            join_stream(event for event in events if event.key == key)
        )
    assert together == separately
    assert len(together) == 3


def test_no_cross_contamination(join, emitted):
    join.on_primary_event(ride(1))
    join.on_secondary_event(fare(2))
    assert emitted == []
    assert join.pending(1) == ride(1)
    assert join.pending(2) == fare(2)


def test_integer_and_string_keys_are_different(join, emitted):
    join.on_primary_event(ride(1))
    join.on_secondary_event(fare("1"))
    assert emitted == []


def test_pair_emitted_only_once(join, emitted):
    join.on_primary_event(ride(8))
    join.on_secondary_event(fare(8))
    join.on_secondary_event(fare(8, "fare-8-again"))
    assert len(emitted) == 1
    assert join.state_of(8) == WAITING_B


def test_at_most_one_pending_per_key(join):
    sequence = [ride(9), ride(9), fare(9), fare(9), fare(9), ride(9), ride(9)]
    for event in sequence:
        if isinstance(event, PrimaryEvent):
            join.on_primary_event(event)
        else:
            join.on_secondary_event(event)
        assert join.state_of(9) in (EMPTY, WAITING_A, WAITING_B)
        assert join.pending_count() <= 1
    assert join.state_of(9) == WAITING_A


def test_missing_key_is_rejected(join):
    with pytest.raises(MalformedEventError):
        join.on_primary_event(PrimaryEvent(None, "ride"))
    with pytest.raises(MalformedEventError):
        join.on_secondary_event(None)
    with pytest.raises(MalformedEventError):
        join.on_secondary_event({"payload": "no key attribute"})
    assert join.pending_count() == 0


def test_unhashable_key_is_rejected(join):
    with pytest.raises(MalformedEventError):
        join.on_primary_event(PrimaryEvent(["a", "list"], "ride"))


def test_event_before_open_is_fatal():
    join = PairwiseJoin()
    with pytest.raises(StateStoreError):
        join.on_primary_event(ride(1))


class UnreachableStore(StateStore):
    def open(self):
        raise ConnectionError("store is down")


class FailingReadStore(InMemoryStateStore):
    def get(self, key):
        raise StateStoreError("read failed")


def test_open_failure_is_fatal():
    join = PairwiseJoin(state_store=UnreachableStore())
    with pytest.raises(StateStoreError):
        join.open()


def test_read_failure_propagates():
    join = PairwiseJoin(state_store=FailingReadStore())
    join.open()
    with pytest.raises(StateStoreError):
        join.on_primary_event(ride(1))


def test_join_stream_is_lazy():
    def events():
        yield ride(1)
        yield fare(1)
        raise AssertionError("consumed too far")

    stream = join_stream(events())
    assert next(stream) == JoinedPair(ride(1), fare(1))


def test_join_stream_rejects_other_things():
    with pytest.raises(MalformedEventError):
        list(join_stream([ride(1), {"key": 1}]))


def test_interleave_preserves_order_within_sides():
    primary = [ride(1), ride(2), ride(3)]
    secondary = [fare(3)]
    assert list(interleave(primary, secondary)) == [
        ride(1),
        fare(3),
        ride(2),
        ride(3),
    ]


def test_interleave_then_join():
    primary = [ride(key) for key in range(10)]
    secondary = [fare(key) for key in reversed(range(10))]
    pairs = list(join_stream(interleave(primary, secondary)))
    assert sorted(pair.key for pair in pairs) == list(range(10))
    assert all(pair.primary.key == pair.secondary.key for pair in pairs)


def test_concurrent_keys():
    emitted = []
    join = PairwiseJoin(emit=emitted.append, lock_stripes=4)
    join.open()

    def worker(offset):
        for key in range(offset, offset + 250):
            join.on_secondary_event(fare(key))
            join.on_primary_event(ride(key))

    threads = [
        threading.Thread(target=worker, args=(offset,))
        for offset in range(0, 2000, 250)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(emitted) == 2000
    assert all(pair.primary.key == pair.secondary.key for pair in emitted)
    assert join.pending_count() == 0
    assert join.pairs_emitted == 2000


def test_concurrent_counters_across_stripes():
    join = PairwiseJoin(lock_stripes=8)
    join.open()

    def worker(offset):
        for key in range(offset, offset + 500):
            join.on_primary_event(ride(key))
            join.on_primary_event(ride(key))
            join.on_secondary_event(fare(key))

    threads = [
        threading.Thread(target=worker, args=(offset,))
        for offset in range(0, 4000, 500)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert join.events_overwritten == 4000
    assert join.pairs_emitted == 4000


def test_concurrent_same_key():
    emitted = []
    join = PairwiseJoin(emit=emitted.append)
    join.open()

    def send_rides():
        for _ in range(500):
            join.on_primary_event(ride(1))

    def send_fares():
        for _ in range(500):
            join.on_secondary_event(fare(1))

    threads = [
        threading.Thread(target=send_rides),
        threading.Thread(target=send_fares),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert 1 <= len(emitted) <= 500
    assert join.pending_count() <= 1
