"""
Events module
=============

The record types that flow into and out of a ``PairwiseJoin``.

A ``PrimaryEvent`` and a ``SecondaryEvent`` carry a ``key`` and an opaque
``payload``. "Primary" and "secondary" are role labels only; neither side
takes priority over the other. When one of each has been seen for the same
key, a ``JoinedPair`` is produced, always ordered ``(primary, secondary)``.

All of these are named tuples, so they are immutable once created and can
be pickled by the durable state stores.
"""

import collections

# Sides
PRIMARY = "primary"
SECONDARY = "secondary"

# Logical state of one key. There is no resting "matched" state: a match
# emits a pair and returns the key to ``EMPTY``.
EMPTY = "EMPTY"
WAITING_A = "WAITING_A"
WAITING_B = "WAITING_B"


class PrimaryEvent(collections.namedtuple("PrimaryEvent", ["key", "payload"])):
    __slots__ = ()
    side = PRIMARY


class SecondaryEvent(
    collections.namedtuple("SecondaryEvent", ["key", "payload"])
):
    __slots__ = ()
    side = SECONDARY


class PendingSlot(collections.namedtuple("PendingSlot", ["side", "event"])):
    """
    The single unmatched event held for a key, tagged with its side.
    """

    __slots__ = ()

    @property
    def state(self):
        return WAITING_A if self.side == PRIMARY else WAITING_B


class JoinedPair(
    collections.namedtuple("JoinedPair", ["primary", "secondary"])
):
    __slots__ = ()

    @property
    def key(self):
        return self.primary.key
