"""
Exceptions module
=================

Errors raised by the join and by the pipeline that hosts it. None of these
are retried inside ``joinpipe``; they are surfaced to whoever called the
entry point.
"""


class JoinPipeError(Exception):
    pass


class StateStoreError(JoinPipeError):
    """
    The store behind the per-key pending slots could not be opened or
    accessed. Fatal for the affected partition.
    """

    pass


class MalformedEventError(JoinPipeError):
    """
    An event arrived without a usable key.
    """

    pass


class JoinPipeConfigError(JoinPipeError):
    pass
