from datetime import datetime, timezone

import pytest
import requests

from mangrove_admin.gateway import ApiGateway
from mangrove_admin.session_store import MemoryStorage, SessionStore

BASE_URL = "https://backend.test/mangrove"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeResponse:

    def __init__(self, body=None, status_code=200, text=None):
        self.body = body
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self.text is not None:
            raise ValueError(f"Expecting value: {self.text[:20]}")
        return self.body

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeHttp:
    """Stands in for ``requests.Session``; routes by URL path suffix."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.closed = False

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "json": json, "headers": headers or {}, "timeout": timeout})
        for suffix, outcome in self.routes.items():
            if url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"no route for {url}")

    def close(self):
        self.closed = True


class Clock:

    def __init__(self, moment=NOW):
        self.moment = moment

    def __call__(self):
        return self.moment


@pytest.fixture
def clock():
    return Clock()

@pytest.fixture
def storage():
    return MemoryStorage()

@pytest.fixture
def store(storage, clock):
    return SessionStore(storage, now=clock)

@pytest.fixture
def http():
    return FakeHttp()

@pytest.fixture
def gateway(store, http):
    return ApiGateway(store, base_url=BASE_URL, timeout=5, http=http)
