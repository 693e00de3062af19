"""
Node module
===========

The ``node`` module contains the ``JoinPipeNode`` class, which is the
foundation for every step of a pipeline, together with a few generic
nodes for feeding, filtering and draining pipelines.

Nodes are linked with ``>``, which creates a ``JoinPipeQueue`` between
them. ``global_start`` runs every connected node in its own thread.

::

    rides = IterableEmitter(ride_events, name="rides")
    fares = IterableEmitter(fare_events, name="fares")
    join = PairwiseJoinNode(primary="rides", secondary="fares")
    sink = CollectorNode()
    rides > join
    fares > join
    join > sink
    rides.global_start()
    rides.wait_for_pipeline_finish()
"""

import datetime
import logging
import os
import pprint
import threading
import time
import types
import uuid

import prettytable

from joinpipe.exceptions import StateStoreError
from joinpipe.message.message import NothingToSeeHere
from joinpipe.node_queue.queue import JoinPipeQueue
from joinpipe.utils.helpers import load_function
from joinpipe.utils.set_attributes import set_kwarg_attributes

DEFAULT_MAX_QUEUE_SIZE = int(os.environ.get("DEFAULT_MAX_QUEUE_SIZE", 128))
MONITOR_INTERVAL = 1
STATS_COUNTER_MODULO = 4
LOGJAM_THRESHOLD = 0.25
SHORT_DELAY = 0.1


class bcolors:
    """
    This class holds the values for the various colors that are used in the
    tables that monitor the status of the nodes.
    """

    WARNING = "\033[93m"
    FAIL = "\033[91m"
    OKGREEN = "\033[92m"
    ENDC = "\033[0m"


class JoinPipeNode:
    """
    The foundational class of ``joinpipe``. This class is inherited by all
    nodes in a pipeline.

    Order of operations:

    1. Child class ``__init__`` function
    2. ``JoinPipeNode`` ``__init__`` function
    3. ``setup`` (in the node's thread, once the pipeline starts)
    4. ``generator`` for sources, or ``process_item`` for every message
    5. ``cleanup``

    :ivar name: The name of the node. Defaults to a randomly generated hash.
        Join nodes use the names of their upstream nodes to tell primary
        events from secondary ones, so name those explicitly.
    :ivar max_errors: Number of exceptions from ``process_item`` that are
        logged and skipped. One more than that terminates the pipeline.
    :ivar max_messages_received: If set, the node finishes after this many
        messages.
    """

    def __init__(
        self,
        *args,
        name=None,
        max_errors=0,
        max_messages_received=None,
        **kwargs
    ):
        self.name = name or uuid.uuid4().hex
        self.input_queue_list = []
        self.output_queue_list = []
        self.input_node_list = []
        self.output_node_list = []
        self.max_messages_received = max_messages_received
        self.thread_dict = {}
        self.messages_received_counter = 0
        self.messages_sent_counter = 0
        self.instantiated_at = datetime.datetime.now()
        self.started_at = None
        self.stopped_at = None
        self.finished = False
        self.finished_cleanup = False
        self.error_counter = 0
        self.status = "stopped"  # running, error, success
        self.max_errors = max_errors
        self.logjam_score = {"polled": 0.0, "logjam": 0.0}
        self.message = None
        self.message_source = None

    def setup(self):
        """
        For classes that require initialization at runtime, which can't be
        done when the class's ``__init__`` function is called, e.g. opening
        a connection. Runs in the node's own thread. An exception here stops
        the node and marks it ``error``.
        """
        logging.debug(
            "No ``setup`` method for {class_name}.".format(
                class_name=self.__class__.__name__
            )
        )

    def __gt__(self, other):
        """
        Convenience method so that we can link two nodes by ``node1 > node2``.
        This just calls ``add_edge``.
        """
        self.add_edge(other)
        return other

    @property
    def is_source(self):
        return len(self.input_queue_list) == 0

    @property
    def is_sink(self):
        return len(self.output_queue_list) == 0

    def add_edge(self, target, **kwargs):
        """
        Create an edge connecting ``self`` to ``target``.

        Args:
           target (``JoinPipeNode``): The node to which ``self`` will be
               connected.
           max_queue_size (int): Capacity of the queue between them.
        """
        max_queue_size = kwargs.get("max_queue_size", DEFAULT_MAX_QUEUE_SIZE)
        edge_queue = JoinPipeQueue(max_queue_size)

        self.output_node_list.append(target)
        target.input_node_list.append(self)

        edge_queue.source_node = self
        edge_queue.target_node = target

        target.input_queue_list.append(edge_queue)
        self.output_queue_list.append(edge_queue)

    def wait_for_pipeline_finish(self, timeout=None):
        """
        Blocks until the monitor thread declares the pipeline finished.
        Returns ``False`` if ``timeout`` seconds pass first.
        """
        time_started = time.time()
        while not getattr(self, "pipeline_finished", False):
            if timeout is not None and time.time() - time_started >= timeout:
                return False
            time.sleep(SHORT_DELAY)
        return True

    def start(self):
        """
        Starts the node. This is called by ``stream`` in the node's thread.

        1. records the timestamp to the node's ``started_at`` attribute.
        #. calls the ``setup`` method.
        #. if the node is a source, yields all the results of the node's
           ``generator`` method, then exits.
        #. otherwise loops over the input queues, recording the content of
           each message in ``self.message`` and the name of the node it came
           from in ``self.message_source``, and yields whatever
           ``process_item`` yields for it.
        #. once every upstream node has finished and the input queues are
           drained, calls ``cleanup`` and yields its output, if any.
        """
        self.started_at = datetime.datetime.now()
        logging.debug(
            "Starting node: {node}".format(node=self.__class__.__name__)
        )
        self.setup()

        if self.is_source:
            for output in self.generator():
                yield output
                if self.finished:
                    break
            self.finished = True
        else:
            while not self.finished:
                received = False
                for input_queue in self.input_queue_list:
                    one_item = input_queue.get()
                    if one_item is None:
                        continue
                    received = True

                    self.messages_received_counter += 1
                    if (
                        self.max_messages_received is not None
                        and self.messages_received_counter
                        > self.max_messages_received
                    ):
                        self.finished = True
                        break

                    self.message = one_item.message_content
                    self.message_source = one_item.source_name

                    for output in self._process_item():
                        yield output
                    if self.finished:
                        break

                if self.finished:
                    break
                if not received:
                    # Check input node(s) here to see if they're all finished
                    self.finished = all(
                        node.finished_cleanup for node in self.input_node_list
                    ) and all(queue.empty for queue in self.input_queue_list)
                    if not self.finished:
                        time.sleep(SHORT_DELAY)

        cleanup_output = self.cleanup()
        if isinstance(cleanup_output, (types.GeneratorType,)):
            for output in cleanup_output:
                yield output
        self.finished_cleanup = True
        self.log_info("finished")

    def generator(self):
        """
        Source nodes override this to yield their messages.
        """
        return iter(())

    def cleanup(self):
        """
        Closing files, connections etc. when the node stops. May be a
        generator, in which case its output is sent downstream.
        """
        self.log_info("Cleanup called after shutdown.")

    def log_info(self, message=""):
        logging.debug(
            "{node_name}: {message}".format(
                node_name=self.name, message=message
            )
        )

    def terminate_pipeline(self, error=False):
        """
        This method can be called on any node in a pipeline, and it will cause
        all of the nodes to terminate if they haven't stopped already.
        """
        if error:
            logging.error(
                "{node_name} is terminating the pipeline.".format(
                    node_name=self.name
                )
            )
        for node in self.all_connected():
            if not node.finished:
                node.stopped_at = datetime.datetime.now()
                node.finished = True

    def process_item(self):
        """
        Default no-op for nodes.
        """
        yield NothingToSeeHere()

    def _process_item(self):
        """
        Wraps the node's ``process_item`` method. Exceptions are logged and
        counted; exceeding ``max_errors`` terminates the pipeline. A
        ``StateStoreError`` always terminates it, whatever ``max_errors`` is.
        """
        try:
            for out in self.process_item():
                yield out
        except StateStoreError as err:
            self.error_counter += 1
            self.status = "error"
            logging.error(
                "{node_name} lost its state store on {message}: {err}".format(
                    node_name=self.name,
                    message=repr(self.message),
                    err=repr(err),
                )
            )
            self.terminate_pipeline(error=True)
        except Exception as err:
            self.error_counter += 1
            logging.error(
                "{node_name} ({class_name}) failed on {message}: {err}".format(
                    node_name=self.name,
                    class_name=self.__class__.__name__,
                    message=repr(self.message),
                    err=repr(err),
                )
            )
            if self.error_counter > self.max_errors:
                self.status = "error"
                self.terminate_pipeline(error=True)
            else:
                logging.warning(
                    "{node_name}: error {count} of {max_errors} "
                    "allowed".format(
                        node_name=self.name,
                        count=self.error_counter,
                        max_errors=self.max_errors,
                    )
                )

    def stream(self):
        """
        Called in each ``JoinPipeNode`` thread.
        """
        self.status = "running"
        try:
            for output in self.start():
                for output_queue in self.output_queue_list:
                    self.messages_sent_counter += 1
                    output_queue.put(output, block=True, timeout=None)
        except Exception as error:
            self.status = "error"
            self.stopped_at = datetime.datetime.now()
            logging.error(
                "{node_name} stopped: {error}".format(
                    node_name=self.name, error=repr(error)
                )
            )
            raise error
        if self.status != "error":
            self.status = "success"
        self.stopped_at = datetime.datetime.now()

    @property
    def time_running(self):
        """
        Return the wall-clock time elapsed since the node was started.
        """
        if self.started_at is None:
            return None
        elif self.stopped_at is None:
            return datetime.datetime.now() - self.started_at
        else:
            return self.stopped_at - self.started_at

    def all_connected(self, seen=None):
        """
        Returns all the nodes connected (directly or indirectly) to ``self``,
        including ``self``.
        """
        seen = seen if seen is not None else set()
        seen.add(self)
        for node in self.input_node_list + self.output_node_list:
            if node not in seen:
                node.all_connected(seen=seen)
        return seen

    @property
    def logjam(self):
        """
        Returns the fraction of monitor polls in which the node's input
        queues were all full while its output queues were not.
        """
        if self.logjam_score["polled"] == 0:
            return 0.0
        else:
            return self.logjam_score["logjam"] / self.logjam_score["polled"]

    def global_start(self, pipeline_name=None, max_time=None):
        """
        Starts every node connected to ``self``, each in its own thread, and
        a monitor thread that watches them.
        """
        run_id = uuid.uuid4().hex
        pipeline_name = pipeline_name or run_id
        self.pipeline_finished = False
        self.pipeline_error = False

        for node in self.all_connected():
            node.pipeline_name = pipeline_name
            node.run_id = run_id
            logging.debug("global_start: " + str(node.name))
            thread = threading.Thread(
                target=JoinPipeNode.stream, args=(node,), daemon=True
            )
            node.thread_dict = self.thread_dict
            self.thread_dict[node.name] = thread
            thread.start()
        monitor_thread = threading.Thread(
            target=JoinPipeNode.thread_monitor,
            args=(self,),
            kwargs={"max_time": max_time},
            daemon=True,
        )
        monitor_thread.start()

    @property
    def input_queue_size(self):
        return sum(
            input_queue.size() for input_queue in self.input_queue_list
        )

    def status_table(self):
        """
        A ``prettytable`` summarizing every node in the pipeline.
        """
        table = prettytable.PrettyTable(
            ["Node", "Class", "Received", "Sent", "Queued", "Status", "Time"]
        )
        for node in sorted(self.all_connected(), key=lambda x: x.name):
            if node.status == "running":
                status_color = bcolors.WARNING
            elif node.status == "error":
                status_color = bcolors.FAIL
            elif node.status == "success":
                status_color = bcolors.OKGREEN
            else:
                status_color = ""
            logjam_color = (
                bcolors.FAIL if node.logjam >= LOGJAM_THRESHOLD else ""
            )
            table.add_row(
                [
                    logjam_color + node.name + bcolors.ENDC,
                    node.__class__.__name__,
                    node.messages_received_counter,
                    node.messages_sent_counter,
                    node.input_queue_size,
                    status_color + node.status + bcolors.ENDC,
                    node.time_running,
                ]
            )
        return table

    def thread_monitor(self, max_time=None):
        """
        Loops over all of the nodes in the pipeline. If any has had an
        abnormal exit, terminates the entire pipeline. Sets
        ``pipeline_finished`` once every node has cleaned up.
        """
        counter = 0
        time_started = time.time()
        error = False

        while not self.pipeline_finished:
            time.sleep(MONITOR_INTERVAL)
            counter += 1
            if max_time is not None and time.time() - time_started >= max_time:
                logging.info("Pipeline stopped after max_time.")
                self.terminate_pipeline()
                break

            if counter % STATS_COUNTER_MODULO == 0:
                logging.info("\n" + str(self.status_table()))

            error = any(
                node.status == "error" for node in self.all_connected()
            )
            if error:
                logging.error("Terminating due to error.")
                self.terminate_pipeline(error=True)
                break

            self.pipeline_finished = all(
                node.finished_cleanup for node in self.all_connected()
            )

            # Check for blocked nodes
            for node in self.all_connected():
                logjam = (
                    not node.is_source
                    and all(
                        input_queue.approximately_full()
                        for input_queue in node.input_queue_list
                    )
                    and not any(
                        output_queue.approximately_full()
                        for output_queue in node.output_queue_list
                    )
                )
                node.logjam_score["polled"] += 1
                if logjam:
                    node.logjam_score["logjam"] += 1

        logging.info("\n" + str(self.status_table()))
        self.pipeline_error = error
        self.pipeline_finished = True
        if error:
            logging.info("Abnormal exit.")
        else:
            logging.info("Normal exit.")


class IterableEmitter(JoinPipeNode):
    """
    Source node. Emits each item of ``iterable``, waiting ``delay``
    seconds before each one.
    """

    def __init__(self, iterable, delay=0, **kwargs):
        self.iterable = iterable
        self.delay = delay
        super(IterableEmitter, self).__init__(**kwargs)

    def generator(self):
        for item in self.iterable:
            if self.delay:
                time.sleep(self.delay)
            yield item


class Filter(JoinPipeNode):
    """
    Lets through only the messages for which ``test`` returns a true value.
    ``test`` is a callable, or the name of one in the form
    ``module__function``.
    """

    def __init__(self, test=None, **kwargs):
        if isinstance(test, (str,)):
            test = load_function(test)
        if test is None:
            raise Exception("Filter requires a ``test``.")
        self.test = test
        super(Filter, self).__init__(**kwargs)

    def process_item(self):
        if self.test(self.message):
            yield self.message
        else:
            logging.debug("Blocking message: " + str(self.message))
            yield NothingToSeeHere()


class PrinterOfThings(JoinPipeNode):
    @set_kwarg_attributes()
    def __init__(
        self, disable=False, pretty=False, prepend="printer: ", **kwargs
    ):
        super(PrinterOfThings, self).__init__(**kwargs)

    def process_item(self):
        if not self.disable:
            print(self.prepend)
            if self.pretty:
                pprint.pprint(self.message, indent=2)
            else:
                print(str(self.message))
        yield self.message


class CollectorNode(JoinPipeNode):
    """
    Sink that keeps every message it receives in ``message_list``, and the
    latest one in ``message_holder``.
    """

    def __init__(self, **kwargs):
        self.message_list = []
        self.message_holder = None
        super(CollectorNode, self).__init__(**kwargs)

    def process_item(self):
        self.message_list.append(self.message)
        self.message_holder = self.message
        yield NothingToSeeHere()
