"""
Shared fixtures: an in-memory database and fake HTTP sessions, so nothing
here touches disk or the network.
"""

import json

import pytest

from deltazones.storage.database import db_manager
from deltazones.storage.job_store import JobStore
from deltazones.storage.trade_store import TradeStore


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self.payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Stands in for requests.Session.

    `routes` maps a URL path suffix to a JSON payload, a FakeResponse, an
    exception to raise, or a tuple of those served in order (the last one
    repeats).
    """

    def __init__(self, routes=None):
        self.routes = {
            suffix: list(value) if isinstance(value, tuple) else [value]
            for suffix, value in (routes or {}).items()
        }
        self.headers = {}
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for suffix, queue in self.routes.items():
            if url.endswith(suffix):
                response = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(response, Exception):
                    raise response
                if not isinstance(response, FakeResponse):
                    response = FakeResponse(response)
                return response
        return FakeResponse({'error': 'not found'}, status_code=404)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def database():
    """Fresh in-memory SQLite behind the global db_manager"""
    db_manager.initialize('sqlite://')
    db_manager.create_tables()
    yield db_manager
    db_manager.close()


@pytest.fixture
def trade_store(database):
    return TradeStore(database)


@pytest.fixture
def job_store(database):
    return JobStore(database)
