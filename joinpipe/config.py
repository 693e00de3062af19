"""
Configuration module
====================

A join can be described in YAML:

::

    state_store: redis        # memory (default), redis or timed
    redis:
      host: localhost
      port: 6379
      db: 0
      namespace: rides_and_fares
    timeout: 3600             # only for ``timed``
    primary_key_path: ride_id
    secondary_key_path: ride_id

The environment variables ``JOINPIPE_REDIS_HOST``, ``JOINPIPE_REDIS_PORT``
and ``JOINPIPE_REDIS_DB`` take precedence over the ``redis`` section.
"""

import logging
import os

import yaml

from joinpipe.exceptions import JoinPipeConfigError
from joinpipe.join.state_store import (
    DEFAULT_NAMESPACE,
    InMemoryStateStore,
    RedisStateStore,
    TimedStateStore,
)
from joinpipe.node_classes.join_nodes import PairwiseJoinNode

REDIS_ENVIRONMENT_VARIABLES = {
    "JOINPIPE_REDIS_HOST": ("host", str),
    "JOINPIPE_REDIS_PORT": ("port", int),
    "JOINPIPE_REDIS_DB": ("db", int),
}


def get_environment_variables(*args):
    """
    Retrieves the environment variables listed in ``*args``.

    Returns:
        dict: Environment variable to value, ``None`` where undefined.
    """
    return {
        environment_variable: os.environ.get(environment_variable, None)
        for environment_variable in args
    }


def load_config(pathname):
    with open(pathname, "r") as config_file:
        return parse_config(config_file.read())


def parse_config(raw_config):
    config = yaml.safe_load(raw_config) or {}
    if not isinstance(config, (dict,)):
        raise JoinPipeConfigError(
            "Join configuration must be a mapping, not {type_name}".format(
                type_name=type(config).__name__
            )
        )
    return config


def redis_settings(config, default_namespace=DEFAULT_NAMESPACE):
    settings = dict(config.get("redis") or {})
    environment = get_environment_variables(*REDIS_ENVIRONMENT_VARIABLES)
    for variable, value in environment.items():
        if value is None:
            continue
        setting, cast = REDIS_ENVIRONMENT_VARIABLES[variable]
        try:
            settings[setting] = cast(value)
        except ValueError as err:
            raise JoinPipeConfigError(
                "Bad value for {variable}: {value}".format(
                    variable=variable, value=value
                )
            ) from err
    settings.setdefault("namespace", default_namespace)
    return settings


def build_state_store(config, default_namespace=DEFAULT_NAMESPACE):
    backend = config.get("state_store", "memory")
    logging.debug("Building {backend} state store".format(backend=backend))
    if backend == "memory":
        return InMemoryStateStore()
    elif backend == "timed":
        if "timeout" not in config:
            raise JoinPipeConfigError("The timed state store needs a timeout.")
        return TimedStateStore(timeout=config["timeout"])
    elif backend == "redis":
        return RedisStateStore(**redis_settings(config, default_namespace))
    else:
        raise JoinPipeConfigError(
            "Unknown state store: {backend}".format(backend=backend)
        )


def build_join_node(config, primary=None, secondary=None, **kwargs):
    """
    Builds a ``PairwiseJoinNode`` joining the nodes ``primary`` and
    ``secondary`` as described by ``config``. A Redis store without a
    configured ``namespace`` is namespaced by the node's ``name``, so that
    two joins sharing a Redis database keep their pending events apart.
    """
    return PairwiseJoinNode(
        primary=primary,
        secondary=secondary,
        primary_key_path=config.get("primary_key_path"),
        secondary_key_path=config.get("secondary_key_path"),
        state_store=build_state_store(
            config, default_namespace=kwargs.get("name") or DEFAULT_NAMESPACE
        ),
        **kwargs
    )
