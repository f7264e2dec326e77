"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and the shared test
doubles. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any
from unittest.mock import patch

import pytest

# courier.config loads .env at import time, before any fixture runs; import the
# package here with loading disabled so a developer .env cannot reach the suite.
with patch("dotenv.load_dotenv", lambda *_args, **_kwargs: False):
    from courier.config import Config
    from courier.models import ConversationMessage, ModelInfo, ProviderResponse
    from courier.retry import RetryPolicy

TEST_MODEL = ModelInfo(id="claude-test", default_max_tokens=50_000)
REASONING_MODEL = ModelInfo(id="claude-test-thinking", can_reason=True)
OVERFLOW_MESSAGE = (
    "input length and `max_tokens` exceed context limit: 154978 + 50000 > 200000"
)

# =============================================================================
# Test Doubles
# =============================================================================


class FakeRawStream:
    """Raw event stream double.

    Yields scripted events in order; an exception in the script is raised at
    that point. With ``hang=True`` the stream blocks after its last event
    until cancelled.
    """

    def __init__(self, items: list[Any], *, hang: bool = False) -> None:
        self.items = list(items)
        self.hang = hang
        self.closed = False

    async def __aiter__(self) -> Any:
        for item in self.items:
            if isinstance(item, BaseException):
                raise item
            yield item
        if self.hang:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


@dataclass
class ScriptedTransport:
    """Transport double that replays scripted results and exceptions.

    ``sends`` feeds ``send()``; ``streams`` feeds ``open_stream()``. Every
    request and credential is recorded for assertions.
    """

    name: str = "scripted"
    supports_streaming: bool = True
    sends: list[ProviderResponse | BaseException] = field(default_factory=list)
    streams: list[FakeRawStream | BaseException] = field(default_factory=list)
    requests: list[Any] = field(default_factory=list)
    credentials: list[str] = field(default_factory=list)
    closed: bool = False

    async def send(self, request: Any, *, credential: str) -> ProviderResponse:
        self.requests.append(request)
        self.credentials.append(credential)
        if not self.sends:
            return ProviderResponse(content="ok")
        item = self.sends.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def open_stream(self, request: Any, *, credential: str) -> FakeRawStream:
        self.requests.append(request)
        self.credentials.append(credential)
        item = self.streams.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> Config:
    """Config with a test key, a plain base URL and zero backoff."""
    values: dict[str, Any] = {
        "api_key": "sk-test",
        "base_url": "https://api.example.com",
        "retry": RetryPolicy(base_delay_ms=0),
    }
    values.update(overrides)
    return Config(**values)


def user(text: str) -> ConversationMessage:
    return ConversationMessage.of("user", text)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_anthropic_env(request, monkeypatch):
    """Ensure a clean ANTHROPIC_* environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("ANTHROPIC_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
