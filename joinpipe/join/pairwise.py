"""
Pairwise join module
====================

``PairwiseJoin`` matches a stream of ``PrimaryEvent`` objects against a
stream of ``SecondaryEvent`` objects on their ``key``. It emits a
``JoinedPair`` as soon as one event of each side has arrived for a key,
whichever came first, and then forgets the key.

Per key it holds at most one unmatched event:

==============  =====================  ====================================
state           primary arrives        secondary arrives
==============  =====================  ====================================
``EMPTY``       hold it (WAITING_A)    hold it (WAITING_B)
``WAITING_A``   replace the held one   emit pair, back to ``EMPTY``
``WAITING_B``   emit pair, ``EMPTY``   replace the held one
==============  =====================  ====================================

Replacing a held event on the same side is silent: the earlier event is
never emitted and no error is raised.

All events for one key must reach the same ``PairwiseJoin``; order within a
side is assumed, order between the sides is not. Calls for the same key are
serialized by a lock chosen from the key's hash, so the entry points may be
called from several threads. Calls for different keys usually take
different locks and proceed in parallel.

Example:

::

    join = PairwiseJoin(emit=print)
    join.open()
    join.on_primary_event(PrimaryEvent(1, "ride-1"))
    join.on_secondary_event(SecondaryEvent(1, "fare-1"))  # prints the pair

"""

import logging
import threading

from joinpipe.exceptions import MalformedEventError, StateStoreError
from joinpipe.join.state_store import InMemoryStateStore
from joinpipe.message.events import (
    EMPTY,
    PRIMARY,
    SECONDARY,
    JoinedPair,
    PendingSlot,
    PrimaryEvent,
    SecondaryEvent,
)

DEFAULT_LOCK_STRIPES = 64


class PairwiseJoin:
    """
    :ivar state_store: Where the pending slots live. Defaults to a fresh
        ``InMemoryStateStore``.
    :ivar emit: Optional callable; each ``JoinedPair`` is passed to it the
        moment it is produced.
    :ivar lock_stripes: Number of locks that the keys are spread over.
    """

    def __init__(
        self, state_store=None, emit=None, lock_stripes=DEFAULT_LOCK_STRIPES
    ):
        self.state_store = state_store or InMemoryStateStore()
        self.emit = emit
        self.locks = [threading.Lock() for _ in range(lock_stripes)]
        self.counter_lock = threading.Lock()
        self.pairs_emitted = 0
        self.events_overwritten = 0

    def open(self):
        """
        Opens the state store. Must be called once before any event. A
        failure here is fatal and is raised as ``StateStoreError``.
        """
        try:
            self.state_store.open()
        except StateStoreError:
            raise
        except Exception as err:
            raise StateStoreError(
                "Could not open {store}: {err}".format(
                    store=self.state_store.__class__.__name__, err=str(err)
                )
            ) from err

    def close(self):
        self.state_store.close()

    def on_primary_event(self, event):
        """
        Handles a ``PrimaryEvent``. Returns the ``JoinedPair`` if this event
        completed one, otherwise ``None``.
        """
        return self._on_event(event, PRIMARY)

    def on_secondary_event(self, event):
        """
        Handles a ``SecondaryEvent``. Returns the ``JoinedPair`` if this
        event completed one, otherwise ``None``.
        """
        return self._on_event(event, SECONDARY)

    def state_of(self, key):
        """
        Returns ``EMPTY``, ``WAITING_A`` or ``WAITING_B`` for ``key``.
        """
        with self._lock_for(key):
            slot = self._get(key)
        return EMPTY if slot is None else slot.state

    def pending(self, key):
        """
        Returns the event held for ``key``, or ``None``.
        """
        with self._lock_for(key):
            slot = self._get(key)
        return None if slot is None else slot.event

    def pending_count(self):
        self._check_open()
        return self.state_store.pending_count()

    def _on_event(self, event, side):
        key = self._validated_key(event)
        with self._lock_for(key):
            slot = self._get(key)
            if slot is None or slot.side == side:
                if slot is not None:
                    self._increment("events_overwritten")
                    logging.debug(
                        "Replacing pending {side} event for key {key}".format(
                            side=side, key=repr(key)
                        )
                    )
                self._set(key, PendingSlot(side, event))
                return None
            self._clear(key)
            if side == PRIMARY:
                pair = JoinedPair(event, slot.event)
            else:
                pair = JoinedPair(slot.event, event)
            self._increment("pairs_emitted")
            if self.emit is not None:
                self.emit(pair)
            return pair

    @staticmethod
    def _validated_key(event):
        if event is None:
            raise MalformedEventError("Received None instead of an event.")
        key = getattr(event, "key", None)
        if key is None:
            raise MalformedEventError(
                "Event has no key: {event}".format(event=repr(event))
            )
        try:
            hash(key)
        except TypeError as err:
            raise MalformedEventError(
                "Event key is not hashable: {key}".format(key=repr(key))
            ) from err
        return key

    def _increment(self, counter):
        # Keys on different stripes update the counters concurrently
        with self.counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def _lock_for(self, key):
        return self.locks[hash(key) % len(self.locks)]

    def _check_open(self):
        if not self.state_store.opened:
            raise StateStoreError(
                "State store {store} used before it was opened.".format(
                    store=self.state_store.__class__.__name__
                )
            )

    def _get(self, key):
        self._check_open()
        return self.state_store.get(key)

    def _set(self, key, slot):
        self.state_store.set(key, slot)

    def _clear(self, key):
        self.state_store.clear(key)


def interleave(primary_events, secondary_events):
    """
    Round-robins two ordered sequences of events, preserving the order
    within each. When one runs out, the rest of the other follows.
    """
    primary_iter = iter(primary_events)
    secondary_iter = iter(secondary_events)
    active = [primary_iter, secondary_iter]
    while active:
        for iterator in list(active):
            try:
                yield next(iterator)
            except StopIteration:
                active.remove(iterator)


def join_stream(events, state_store=None):
    """
    Lazily joins an iterable of ``PrimaryEvent`` and ``SecondaryEvent``
    objects, yielding each ``JoinedPair`` as soon as it is complete. The
    iterable may be unbounded.
    """
    join = PairwiseJoin(state_store=state_store)
    join.open()
    try:
        for event in events:
            if isinstance(event, (PrimaryEvent,)):
                pair = join.on_primary_event(event)
            elif isinstance(event, (SecondaryEvent,)):
                pair = join.on_secondary_event(event)
            else:
                raise MalformedEventError(
                    "Not a primary or secondary event: {event}".format(
                        event=repr(event)
                    )
                )
            if pair is not None:
                yield pair
    finally:
        join.close()
