import os

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TASKS_HMAC_SECRET", "test-tasks-secret")

class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

class FakeConnection:
    """
    Stand-in for an asyncpg connection.
    Results are queued per method and handed out in order; an Exception
    instance in the queue is raised instead of returned.
    """

    DEFAULTS = {"fetch": [], "fetchrow": None, "fetchval": None, "execute": "OK", "executemany": None}

    def __init__(self):
        self.calls = []
        self.results = {name: [] for name in self.DEFAULTS}

    def queue(self, method: str, *values):
        self.results[method].extend(values)
        return self

    def queries(self, method: str = None):
        return [q for m, q, _ in self.calls if method is None or m == method]

    def args_for(self, fragment: str):
        for _, query, args in self.calls:
            if fragment in query:
                return args
        raise AssertionError(f"No query containing {fragment!r}")

    async def _call(self, method, query, args):
        self.calls.append((method, " ".join(query.split()), args))
        pending = self.results[method]
        if pending:
            value = pending.pop(0)
            if isinstance(value, Exception):
                raise value
            return value
        return self.DEFAULTS[method]

    async def fetch(self, query, *args):
        return await self._call("fetch", query, args)

    async def fetchrow(self, query, *args):
        return await self._call("fetchrow", query, args)

    async def fetchval(self, query, *args):
        return await self._call("fetchval", query, args)

    async def execute(self, query, *args):
        return await self._call("execute", query, args)

    async def executemany(self, query, rows):
        return await self._call("executemany", query, (list(rows),))

    def transaction(self):
        return FakeTransaction()

class _Acquire:
    def __init__(self, con):
        self.con = con

    async def __aenter__(self):
        return self.con

    async def __aexit__(self, *exc):
        return False

class FakePool:
    def __init__(self):
        self.con = FakeConnection()

    def acquire(self):
        return _Acquire(self.con)

    async def close(self):
        pass

@pytest.fixture
def pool():
    return FakePool()

@pytest.fixture
def make_client(pool):
    """Build a TestClient around the given routers with the fake pool on app.state"""
    def _make(*routers, overrides=None):
        app = FastAPI()
        for router in routers:
            app.include_router(router)
        app.state.pg_pool = pool
        app.dependency_overrides.update(overrides or {})
        return TestClient(app)
    return _make

@pytest.fixture(autouse=True)
def _reset_flags():
    from services.feature_flags import feature_flags
    saved = feature_flags.all_flags()
    feature_flags.set("FEATURE_CLOUD_TASKS", False)
    yield
    for flag, value in saved.items():
        feature_flags.set(flag, value)
