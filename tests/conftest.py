import fnmatch

import pytest
import redis


class StandInRedis:
    """
    Just enough of the ``redis.Redis`` interface for ``RedisStateStore``.
    """

    def __init__(self, reachable=True):
        self.reachable = reachable
        self.failing_sets = 0
        self.data = {}

    def _check(self):
        if not self.reachable:
            raise redis.exceptions.ConnectionError("Connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, name):
        self._check()
        return self.data.get(name)

    def set(self, name, value):
        self._check()
        if self.failing_sets:
            self.failing_sets -= 1
            raise redis.exceptions.ConnectionError("Connection reset")
        self.data[name] = value
        return True

    def delete(self, name):
        self._check()
        return 1 if self.data.pop(name, None) is not None else 0

    def scan_iter(self, match=None):
        self._check()
        for name in list(self.data):
            if match is None or fnmatch.fnmatch(name, match):
                yield name


@pytest.fixture(scope="function")
def stand_in_redis():
    return StandInRedis()


@pytest.fixture(scope="function")
def unreachable_redis():
    return StandInRedis(reachable=False)
