"""Shared fixtures: settings, loggers, a fake clock and a mocked OpenAI client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from server_config import Settings
from server_helpers import get_logger

# 2024-06-10T12:30:00Z, half way through an hour bucket
FIXED_NOW = 1718022600.0


class FakeClock:
    def __init__(self, now: float = FIXED_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="sk-test-mock-key", validate_connection=False)


@pytest.fixture
def logger():
    return get_logger("tests")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_response(text="Findings [1] and [2]. See https://example.com/a for details.", status="completed", input_tokens=1000, output_tokens=4000):
    """A Responses API result shaped like the SDK object (attribute access)."""
    return SimpleNamespace(
        id="resp_123",
        status=status,
        output_text=text,
        output=[],
        incomplete_details=SimpleNamespace(reason="max_output_tokens") if status == "incomplete" else None,
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens),
    )


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=make_response())
    client.models.list = AsyncMock(return_value=[])
    return client


@pytest.fixture
def response_factory():
    return make_response
