"""
Pytest configuration and fixtures for tests.
"""
import json
import logging
import os
from typing import Any, Dict, List

import httpx
import pytest

# Ensure tests never read a developer's local .env
os.environ.setdefault("PYTEST_DISABLE_DOTENV", "1")

from worker_facade.api.app_logging import HANDLER_NAME  # noqa: E402
from worker_facade.api.config import Settings  # noqa: E402
from worker_facade.core.dispatcher import Facade  # noqa: E402
from worker_facade.core.models import HandlerModule  # noqa: E402


class FrozenClock:
    """Deterministic replacement for the dispatcher's millisecond clock."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def body_text(response) -> str:
    return response.body.decode("utf-8")


@pytest.fixture(autouse=True)
def reset_facade_logging():
    """Drop the stdout handler FacadeInstance.start installs on the root logger."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def make_facade(clock):
    """Build a bare Facade (no internal middleware, no D1 wrapper)."""

    def _make(**exports) -> Facade:
        return Facade(HandlerModule(**exports), clock=clock)

    return _make


@pytest.fixture
def dev_settings():
    return Settings(environment="development", debug=True)


@pytest.fixture
def bare_settings():
    """Settings with every internal middleware switched off."""
    return Settings(environment="development", test_scheduled=False, json_errors=False)


class FakeBinding:
    """Raw binding that records each exchange and replays canned responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses: List[httpx.Response] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def fetch(self, url: str, init: Dict[str, Any]) -> httpx.Response:
        body = init.get("body")
        self.calls.append({
            "url": url,
            "method": init["method"],
            "headers": init["headers"],
            "body": json.loads(body) if body else None,
        })
        return self.responses.pop(0)


def ok(payload: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=payload)
