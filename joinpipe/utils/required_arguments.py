"""
A decorator naming the keyword arguments a function cannot do without.
When any of them is missing from a call, ``MissingRequiredArgument`` is
raised listing every missing name, before the function body runs.

::

    class PairwiseJoinNode(JoinPipeNode):
        @required_arguments("primary", "secondary")
        def __init__(self, primary=None, secondary=None, **kwargs):
            ...

``PairwiseJoinNode(primary="rides")`` raises:

::

    MissingRequiredArgument: Missing required argument(s): secondary

"""

import functools


class MissingRequiredArgument(Exception):
    pass


class required_arguments:
    def __init__(self, *kwarg_list):
        self.kwarg_list = kwarg_list

    def __call__(self, f):
        @functools.wraps(f)
        def inner_function(*args, **kwargs):
            missing_kwargs = [
                kwarg for kwarg in self.kwarg_list if kwarg not in kwargs
            ]
            if len(missing_kwargs) > 0:
                raise MissingRequiredArgument(
                    "Missing required argument(s): "
                    "{kwarg_list}".format(kwarg_list=", ".join(missing_kwargs))
                )
            return f(*args, **kwargs)

        return inner_function
