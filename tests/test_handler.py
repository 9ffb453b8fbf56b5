from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_server import build_handler
from research.errors import ExternalServiceError
from research.rate_limiter import ResearchRateLimiter
from server_config import Settings

VALID_ARGS = {"research_query": "How do heat pumps perform in cold climates?", "accuracy_level": "medium"}


@pytest.fixture
def handler(settings, openai_client, clock, logger):
    handler = build_handler(settings, openai_client=openai_client)
    handler.rate_limiter = ResearchRateLimiter(settings, logger, clock=clock)
    return handler


@pytest.mark.asyncio
async def test_success_envelope(handler, openai_client):
    envelope = await handler.handle(dict(VALID_ARGS))

    assert envelope["success"] is True
    for key in ("research_results", "executive_summary", "model_used", "execution_time_seconds", "sources_found",
                "research_confidence", "coverage_completeness", "recency_score", "related_topics", "limitations",
                "token_usage", "cost_info", "request_id", "rate_limit_remaining", "timestamp"):
        assert key in envelope
    assert envelope["request_id"].startswith("req_")
    assert envelope["token_usage"] == {"input_tokens": 1000, "output_tokens": 4000, "total_tokens": 5000}
    assert envelope["cost_info"]["estimated_cost_usd"] == 0.03
    assert envelope["rate_limit_remaining"] == 5
    assert envelope["execution_time_seconds"] >= 0
    assert envelope["source_urls"] == ["https://example.com/a"]
    openai_client.responses.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_success_is_recorded_against_default_client(handler, settings):
    await handler.handle(dict(VALID_ARGS))
    stats = handler.rate_limiter.get_usage_stats(settings.default_client_id)
    assert stats.hourly_requests == 1
    assert stats.daily_cost == pytest.approx(0.03)
    assert stats.daily_tokens == 5000


@pytest.mark.asyncio
async def test_short_query_never_reaches_research_service(handler, openai_client, settings):
    envelope = await handler.handle({"research_query": "hello", "accuracy_level": "medium"})

    assert envelope["success"] is False
    assert envelope["error_type"] == "validation_error"
    assert envelope["request_id"].startswith("req_")
    assert envelope["validation_errors"][0]["field"] == "research_query"
    assert "research_query" in envelope["error"]
    openai_client.responses.create.assert_not_called()
    assert handler.rate_limiter.get_usage_stats(settings.default_client_id).hourly_requests == 0


@pytest.mark.asyncio
async def test_injection_rejected_before_call(handler, openai_client):
    envelope = await handler.handle({"research_query": "explain javascript:void(0) links please", "accuracy_level": "medium"})
    assert envelope["error_type"] == "validation_error"
    assert envelope["validation_errors"][0]["code"] == "security"
    openai_client.responses.create.assert_not_called()


@pytest.mark.asyncio
async def test_incomplete_response_gives_retry_guidance(handler, openai_client, response_factory, settings):
    openai_client.responses.create.return_value = response_factory(text="", status="incomplete", input_tokens=500, output_tokens=500)

    envelope = await handler.handle(dict(VALID_ARGS))

    assert envelope["success"] is False
    assert envelope["error_type"] == "internal_error"
    assert envelope["retryable"] is True
    assert "try again" in envelope["error"].lower()
    assert "timestamp" in envelope
    # partial usage is still billed
    stats = handler.rate_limiter.get_usage_stats(settings.default_client_id)
    assert stats.hourly_requests == 1
    assert stats.daily_cost == pytest.approx(0.006)


@pytest.mark.asyncio
async def test_service_failure_becomes_internal_error(handler, openai_client, settings):
    openai_client.responses.create.side_effect = ExternalServiceError("OpenAI Deep Research failed: boom", kind="api_error")

    envelope = await handler.handle(dict(VALID_ARGS))

    assert envelope == {
        "success": False,
        "error": "OpenAI Deep Research failed: boom",
        "error_type": "internal_error",
        "request_id": envelope["request_id"],
        "timestamp": envelope["timestamp"],
    }
    assert handler.rate_limiter.get_usage_stats(settings.default_client_id).hourly_requests == 0


@pytest.mark.asyncio
async def test_unexpected_exception_still_returns_envelope(handler, openai_client):
    openai_client.responses.create.side_effect = RuntimeError("socket closed")
    envelope = await handler.handle(dict(VALID_ARGS))
    assert envelope["success"] is False
    assert envelope["error_type"] == "internal_error"
    assert envelope["error"] == "socket closed"


@pytest.mark.asyncio
async def test_rate_limited_request_is_not_sent(handler, openai_client, settings):
    for _ in range(settings.medium_accuracy_hourly_limit):
        handler.rate_limiter.record_request(settings.default_client_id, "medium", 0.01, 100)

    envelope = await handler.handle(dict(VALID_ARGS))

    assert envelope["success"] is False
    assert envelope["error_type"] == "rate_limit_error"
    assert envelope["reason"] == "hourly_limit"
    assert envelope["retry_after"].endswith("Z")
    openai_client.responses.create.assert_not_called()


@pytest.mark.asyncio
async def test_rate_limit_not_enforced_when_disabled(openai_client, clock, logger):
    settings = Settings(openai_api_key="sk-test-mock-key", rate_limit_enforced=False)
    handler = build_handler(settings, openai_client=openai_client)
    handler.rate_limiter = ResearchRateLimiter(settings, logger, clock=clock)
    for _ in range(settings.medium_accuracy_hourly_limit):
        handler.rate_limiter.record_request(settings.default_client_id, "medium", 0.01, 100)

    envelope = await handler.handle(dict(VALID_ARGS))
    assert envelope["success"] is True
    assert envelope["rate_limit_remaining"] == 0


@pytest.mark.asyncio
async def test_invalid_client_id_rejected(handler, openai_client):
    envelope = await handler.handle(dict(VALID_ARGS), client_id="no spaces allowed")
    assert envelope["error_type"] == "validation_error"
    assert envelope["validation_errors"][0]["field"] == "client_id"
    openai_client.responses.create.assert_not_called()


@pytest.mark.asyncio
async def test_query_is_sanitized_before_dispatch(settings, logger):
    client = MagicMock()
    client.perform_research = AsyncMock(side_effect=RuntimeError("stop"))
    handler = build_handler(settings, openai_client=MagicMock())
    handler.client = client

    await handler.handle({"research_query": "Heat   pumps\n\nin   cold climates", "accuracy_level": "medium"})

    request = client.perform_research.call_args.args[0]
    assert request.research_query == "Heat pumps in cold climates"


@pytest.mark.asyncio
async def test_each_request_gets_a_distinct_id(handler):
    first = await handler.handle({"research_query": "short", "accuracy_level": "medium"})
    second = await handler.handle({"research_query": "short", "accuracy_level": "medium"})
    assert first["request_id"] != second["request_id"]
