"""Test doubles shared by the unit tests.

Adapters are driven through fakes: a clock that records sleeps instead
of sleeping, and an HTTP session that serves canned responses keyed by
method and path.
"""

from __future__ import annotations

import json
from typing import Any

from cloudfleet.config import Config


class FakeConfig(Config):
    """Settings used by every unit test."""

    DIGITALOCEAN_API_URL = "https://do.test/v2"
    LINODE_API_URL = "https://linode.test/v4"
    LINODE_RETRY_JITTER = 0.0
    AZURE_FALLBACK_REGIONS = ["eastus", "westeurope"]
    AZURE_FOCUS_REGION = "eastus"
    AZURE_RESOURCE_GROUP_PREFIX = "cf-"
    AZURE_MANAGED_BY_TAG = "cloudfleet"
    ENCRYPTION_KEY = "unit-test-passphrase"


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Serves queued responses per (method, path) and records every call.

    The last queued response for a route is sticky so polling loops keep
    receiving it. Queued exceptions are raised instead of returned.
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[tuple[str, str, dict | None, dict | None]] = []
        self.headers: dict[str, str] = {}

    def add(self, method: str, path: str, *responses: Any) -> None:
        self.routes.setdefault((method, path), []).extend(responses)

    def request(self, method, url, params=None, json=None, timeout=None):
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.calls.append((method, path, params, json))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request {method} {path}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def paths(self, method: str | None = None) -> list[str]:
        return [path for m, path, _, _ in self.calls if method is None or m == method]

    def bodies(self, method: str, path: str) -> list[dict | None]:
        return [body for m, p, _, body in self.calls if m == method and p == path]


def ok(payload: Any = None, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, payload if payload is not None else {})


def fail(status_code: int, text: str = "error") -> FakeResponse:
    return FakeResponse(status_code, text=text)
