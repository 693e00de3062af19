"""
Helper module
*************

Misc. helper functions for other classes.
"""

import importlib
import pickle
import base64


def package(thing):
    return base64.b64encode(pickle.dumps(thing))


def unpackage(thing):
    return pickle.loads(base64.b64decode(thing))


def load_function(function_name):
    """
    Loads a function given a name like ``module__submodule__function``.
    """
    components = function_name.split("__")
    if len(components) < 2:
        raise Exception(
            "Function name must be qualified by its module: "
            "{function_name}".format(function_name=function_name)
        )
    module = ".".join(components[:-1])
    function_name = components[-1]
    module = importlib.import_module(module)
    function = getattr(module, function_name)
    return function


class ListIndex:
    def __init__(self, index):
        self.index = index

    def __repr__(self):
        return "ListIndex({index})".format(index=str(self.index))

    def __eq__(self, other):
        return isinstance(other, (ListIndex,)) and self.index == other.index

    def __hash__(self):
        return self.index


def get_value(dictionary, path, delimiter=".", default_value=None):
    """
    Walks ``path`` down a nested structure of dictionaries and lists.
    Missing dictionary keys produce ``default_value``.
    """
    if isinstance(path, (str,)):
        path = path.split(delimiter)
    elif isinstance(path, (list, tuple)):
        pass
    else:
        raise Exception(
            "Path must be a string or a list: {path}".format(path=str(path))
        )
    for step in path:
        if dictionary is None or isinstance(dictionary, (dict,)):
            dictionary = (dictionary or {}).get(step, default_value)
        elif isinstance(step, (ListIndex,)):
            dictionary = dictionary[step.index]
        else:
            dictionary = getattr(dictionary, step, default_value)
    return dictionary
