"""
JoinPipeMessage module
======================

The ``JoinPipeMessage`` wraps whatever travels along an edge of the
pipeline, along with the name of the node that sent it.
"""


class JoinPipeMessage(object):
    """
    A class that contains the message payloads that are queued for
    each ``JoinPipeNode``. The content may be a dictionary, an event, or a
    ``JoinedPair``.
    """

    def __init__(self, message_content, source_name=None):
        if message_content is None:
            raise Exception("Message content must not be None.")
        self.message_content = message_content
        self.source_name = source_name

    def __repr__(self):
        return "JoinPipeMessage from {source}: {content}".format(
            source=self.source_name, content=repr(self.message_content)
        )


class NothingToSeeHere:
    """
    Vacuous class used as a no-op message type. Nodes yield it when an
    input produces no output; queues drop it.
    """

    pass
