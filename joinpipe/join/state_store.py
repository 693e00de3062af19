"""
State store module
==================

Storage for the per-key ``PendingSlot`` objects of a ``PairwiseJoin``.

Every store offers the same small contract:

* ``open()`` is called once before any event is processed. It establishes
  empty per-key state and raises ``StateStoreError`` if the store is
  unusable.
* ``get(key)`` returns the ``PendingSlot`` for ``key`` or ``None``.
* ``set(key, slot)`` replaces whatever slot ``key`` had.
* ``clear(key)`` forgets ``key``.
* ``pending_count()`` is the number of keys holding an unmatched event.
* ``close()`` releases any resources.

The stores do no locking of their own; ``PairwiseJoin`` serializes all
access for a given key.

``InMemoryStateStore`` is the default and never expires anything: an event
whose counterpart never arrives stays in memory for the life of the
process. ``TimedStateStore`` is the opt-in alternative that evicts
unmatched slots after a timeout.
"""

import logging
import time

import redis
from timed_dict.timed_dict import TimedDict

from joinpipe.exceptions import MalformedEventError, StateStoreError
from joinpipe.utils.helpers import package, unpackage

DEFAULT_NAMESPACE = "joinpipe"


class StateStore:
    """
    Base class for the stores. Subclasses override the storage methods.
    """

    def __init__(self):
        self.opened = False

    def open(self):
        self.opened = True

    def get(self, key):
        raise NotImplementedError

    def set(self, key, slot):
        raise NotImplementedError

    def clear(self, key):
        raise NotImplementedError

    def pending_count(self):
        raise NotImplementedError

    def close(self):
        self.opened = False


class InMemoryStateStore(StateStore):
    def __init__(self):
        self.slots = {}
        super(InMemoryStateStore, self).__init__()

    def open(self):
        self.slots = {}
        super(InMemoryStateStore, self).open()

    def get(self, key):
        return self.slots.get(key)

    def set(self, key, slot):
        self.slots[key] = slot

    def clear(self, key):
        self.slots.pop(key, None)

    def pending_count(self):
        return len(self.slots)


class TimedStateStore(StateStore):
    """
    Pending slots expire ``timeout`` seconds after they were last written,
    whether or not their counterpart ever arrived. An expired event is
    dropped without emission. This trades the unbounded retention of
    ``InMemoryStateStore`` for the possibility of missing a late match.

    The ``TimedDict`` sweep reclaims the memory of expired slots. Expiry is
    also checked on every read, so an expired slot is never matched even
    if the sweep has not reached it yet.
    """

    def __init__(self, timeout=3600):
        self.timeout = timeout
        self.slots = None
        super(TimedStateStore, self).__init__()

    def open(self):
        self.slots = TimedDict(timeout=self.timeout)
        logging.info(
            "Pending slots will expire after {timeout} seconds.".format(
                timeout=self.timeout
            )
        )
        super(TimedStateStore, self).open()

    def _expired(self, written_at):
        return time.time() - written_at > self.timeout

    def get(self, key):
        entry = self.slots.get(key)
        if entry is None:
            return None
        written_at, slot = entry
        if self._expired(written_at):
            self.slots.pop(key, None)
            return None
        return slot

    def set(self, key, slot):
        self.slots[key] = (time.time(), slot)

    def clear(self, key):
        self.slots.pop(key, None)

    def pending_count(self):
        for key, (written_at, _) in list(self.slots.items()):
            if self._expired(written_at):
                self.slots.pop(key, None)
        return len(self.slots)

    def close(self):
        if self.slots is not None:
            self.slots.stop_sweep()
        super(TimedStateStore, self).close()


def redis_key_part(key):
    """
    Renders ``key`` so that keys which are equal in a dictionary render the
    same: ``True``, ``1`` and ``1.0`` all become ``1``. Only strings,
    bytes, numbers and tuples of those are accepted; anything else has no
    ``repr`` that is stable across processes.
    """
    if isinstance(key, (int,)):
        return repr(int(key))
    elif isinstance(key, (float,)):
        if key.is_integer():
            return repr(int(key))
        return repr(float(key))
    elif isinstance(key, (str,)):
        return repr(str(key))
    elif isinstance(key, (bytes,)):
        return repr(bytes(key))
    elif isinstance(key, (tuple,)):
        return "({parts},)".format(
            parts=", ".join(redis_key_part(part) for part in key)
        )
    else:
        raise MalformedEventError(
            "Key {key} of type {type_name} cannot be stored in Redis".format(
                key=repr(key), type_name=type(key).__name__
            )
        )


class RedisStateStore(StateStore):
    """
    Keeps each pending slot in Redis so that it survives a restart of the
    process. Slots are pickled, base64-encoded, and stored under
    ``<namespace>:<key>``, where the key is rendered by
    ``redis_key_part``. Keys therefore match exactly when they would match
    in ``InMemoryStateStore``.

    Every join sharing a Redis database needs its own ``namespace``;
    joins under the same namespace match each other's pending events.
    ``build_join_node`` defaults the namespace to the node's name.

    Any ``redis`` error, at ``open`` or afterwards, is raised as a
    ``StateStoreError``.
    """

    def __init__(
        self,
        host="localhost",
        port=6379,
        db=0,
        namespace=DEFAULT_NAMESPACE,
        client=None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.namespace = namespace
        self.redis = client or redis.Redis(host=host, port=port, db=db)
        super(RedisStateStore, self).__init__()

    def _redis_key(self, key):
        return "{namespace}:{key}".format(
            namespace=self.namespace, key=redis_key_part(key)
        )

    def open(self):
        try:
            self.redis.ping()
        except redis.exceptions.RedisError as err:
            raise StateStoreError(
                "Cannot reach Redis at {host}:{port}/{db}: {err}".format(
                    host=self.host, port=self.port, db=self.db, err=str(err)
                )
            ) from err
        logging.debug(
            "Redis state store open under namespace {namespace}".format(
                namespace=self.namespace
            )
        )
        super(RedisStateStore, self).open()

    def get(self, key):
        try:
            value = self.redis.get(self._redis_key(key))
        except redis.exceptions.RedisError as err:
            raise StateStoreError(str(err)) from err
        return unpackage(value) if value is not None else None

    def set(self, key, slot):
        try:
            self.redis.set(self._redis_key(key), package(slot))
        except redis.exceptions.RedisError as err:
            raise StateStoreError(str(err)) from err

    def clear(self, key):
        try:
            self.redis.delete(self._redis_key(key))
        except redis.exceptions.RedisError as err:
            raise StateStoreError(str(err)) from err

    def pending_count(self):
        pattern = "{namespace}:*".format(namespace=self.namespace)
        try:
            return sum(1 for _ in self.redis.scan_iter(match=pattern))
        except redis.exceptions.RedisError as err:
            raise StateStoreError(str(err)) from err
