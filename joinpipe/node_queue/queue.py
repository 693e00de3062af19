"""
JoinPipeQueue module
====================

These are queues that form the directed edges between nodes.
"""

import queue
import uuid
import logging

from joinpipe.message.message import JoinPipeMessage, NothingToSeeHere


class JoinPipeQueue:
    """
    A bounded FIFO between ``source_node`` and ``target_node``. Every
    message put on it is stamped with the name of ``source_node``, which is
    how a join node tells its two inputs apart.
    """

    def __init__(self, max_queue_size, name=None):
        self.queue = queue.Queue(max_queue_size)
        self.max_queue_size = max_queue_size
        self.name = name or uuid.uuid4().hex
        self.source_node = None
        self.target_node = None

    def size(self):
        return self.queue.qsize()

    def approximately_full(self):
        return self.size() >= (self.max_queue_size - 1)

    @property
    def empty(self):
        return self.queue.empty()

    def get(self):
        try:
            message = self.queue.get(block=False)
        except queue.Empty:
            return None
        logging.debug(
            "QUEUE {name} SIZE: {queue_size}".format(
                name=self.name, queue_size=str(self.size())
            )
        )
        return message

    def put(self, message, block=True, timeout=None):
        """
        Places a message on the queue. ``None`` and ``NothingToSeeHere``
        are skipped.
        """
        if message is None or isinstance(message, (NothingToSeeHere,)):
            return
        source_name = (
            self.source_node.name if self.source_node is not None else None
        )
        message_obj = JoinPipeMessage(message, source_name=source_name)
        self.queue.put(message_obj, block=block, timeout=timeout)
