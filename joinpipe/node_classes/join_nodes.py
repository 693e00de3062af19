"""
Join nodes
==========

``PairwiseJoinNode`` runs a ``PairwiseJoin`` inside a pipeline. It has two
upstream nodes: messages from the one named ``primary`` become primary
events, messages from the one named ``secondary`` become secondary events.
Each completed match is sent downstream as a ``JoinedPair``.

Upstream nodes may send ``PrimaryEvent`` / ``SecondaryEvent`` objects
directly, or dictionaries, in which case the key is read with
``primary_key_path`` / ``secondary_key_path`` (``"ride.id"`` or
``["ride", "id"]``) and the whole dictionary becomes the payload.

::

    rides = IterableEmitter(ride_dicts, name="rides")
    fares = IterableEmitter(fare_dicts, name="fares")
    join = PairwiseJoinNode(
        primary="rides", secondary="fares",
        primary_key_path="ride_id", secondary_key_path="ride_id")
    rides > join
    fares > join

A node handles one partition: everything is processed by the node's single
thread, in arrival order.
"""

import logging

from joinpipe.exceptions import MalformedEventError
from joinpipe.join.pairwise import PairwiseJoin
from joinpipe.message.events import PrimaryEvent, SecondaryEvent
from joinpipe.message.message import NothingToSeeHere
from joinpipe.node import JoinPipeNode
from joinpipe.utils.helpers import get_value
from joinpipe.utils.required_arguments import required_arguments


class PairwiseJoinNode(JoinPipeNode):
    """
    :ivar primary: Name of (or the) upstream node sending primary events.
    :ivar secondary: Name of (or the) upstream node sending secondary events.
    :ivar primary_key_path: Key path for dictionary messages from ``primary``.
    :ivar secondary_key_path: Key path for dictionary messages from
        ``secondary``.
    :ivar state_store: Passed to the ``PairwiseJoin``.
    """

    @required_arguments("primary", "secondary")
    def __init__(
        self,
        primary=None,
        secondary=None,
        primary_key_path=None,
        secondary_key_path=None,
        state_store=None,
        **kwargs
    ):
        self.primary = getattr(primary, "name", primary)
        self.secondary = getattr(secondary, "name", secondary)
        if self.primary == self.secondary:
            raise Exception(
                "Primary and secondary inputs must be different nodes."
            )
        self.primary_key_path = primary_key_path
        self.secondary_key_path = secondary_key_path
        self.join = PairwiseJoin(state_store=state_store)
        super(PairwiseJoinNode, self).__init__(**kwargs)

    def setup(self):
        input_names = set(node.name for node in self.input_node_list)
        missing = set([self.primary, self.secondary]) - input_names
        if missing:
            raise Exception(
                "{name} has no input node named {missing}".format(
                    name=self.name, missing=", ".join(sorted(missing))
                )
            )
        self.join.open()
        self.log_info(
            "joining {primary} with {secondary}".format(
                primary=self.primary, secondary=self.secondary
            )
        )

    def process_item(self):
        if self.message_source == self.primary:
            event = self._to_event(
                self.message, PrimaryEvent, self.primary_key_path
            )
            pair = self.join.on_primary_event(event)
        elif self.message_source == self.secondary:
            event = self._to_event(
                self.message, SecondaryEvent, self.secondary_key_path
            )
            pair = self.join.on_secondary_event(event)
        else:
            raise Exception(
                "Message from unexpected node {source}".format(
                    source=self.message_source
                )
            )
        yield pair if pair is not None else NothingToSeeHere()

    @staticmethod
    def _to_event(message, event_class, key_path):
        if isinstance(message, (event_class,)):
            return message
        if key_path is None:
            raise MalformedEventError(
                "Expected a {cls}, or a key path to read the key from: "
                "{message}".format(
                    cls=event_class.__name__, message=repr(message)
                )
            )
        return event_class(key=get_value(message, key_path), payload=message)

    def cleanup(self):
        pending = (
            self.join.pending_count() if self.join.state_store.opened else 0
        )
        if pending:
            logging.warning(
                "{name}: {pending} event(s) never matched".format(
                    name=self.name, pending=pending
                )
            )
        logging.info(
            "{name}: {pairs} pair(s) emitted, {overwritten} pending event(s) "
            "replaced".format(
                name=self.name,
                pairs=self.join.pairs_emitted,
                overwritten=self.join.events_overwritten,
            )
        )
        self.join.close()
