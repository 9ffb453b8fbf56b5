# research/handler.py
import logging
import time
from typing import Any, Dict, Optional

from research.client import DeepResearchClient
from research.errors import IncompleteResponseError, RateLimitExceeded
from research.models import RateLimitResult
from research.rate_limiter import ResearchRateLimiter
from research.scoring import calculate_cost, estimate_request_cost
from research.validation import RequestValidator
from server_config import Settings
from server_helpers import ContextLogger, epoch_to_iso, generate_request_id, utc_timestamp


class ResearchRequestHandler:
    """
    Orchestrates one `do_deep_research` call from raw arguments to a response envelope.

    The flow is validate, sanitize, rate-limit check, research call. Validation and
    rate-limit rejections return before the research client is touched; anything
    raised by the call itself becomes an `internal_error` envelope. `handle()`
    never raises, so every caller receives a single well-formed dict.
    """
    def __init__(self, validator: RequestValidator, client: DeepResearchClient, rate_limiter: ResearchRateLimiter, settings: Settings, logger: ContextLogger):
        self.validator = validator
        self.client = client
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.logger = logger

    async def handle(self, raw: Any, client_id: Optional[str] = None) -> Dict[str, Any]:
        request_id = generate_request_id()
        client_id = client_id or self.settings.default_client_id
        log = self.logger.child(request_id=request_id, client_id=client_id)
        log.info("Processing deep research request")

        # --- VALIDATING ---
        client_check = self.validator.validate_client_id(client_id)
        if not client_check.valid:
            return self._validation_failure(client_check, request_id, log)

        result = self.validator.validate(raw)
        if not result.valid:
            return self._validation_failure(result, request_id, log)
        request = result.data

        # --- SANITIZING ---
        sanitized = self.validator.sanitize_query(request.research_query)
        if sanitized != request.research_query:
            log.info(f"Query was sanitized (original_length={len(request.research_query)}, sanitized_length={len(sanitized)})")
            request = request.with_query(sanitized)

        # --- RATE LIMIT ---
        estimate = estimate_request_cost(request)
        limit = self.rate_limiter.check_rate_limit(client_id, request.accuracy_level, estimate.estimated_cost_usd)
        if not limit.allowed:
            if self.settings.rate_limit_enforced:
                return self._rate_limit_failure(RateLimitExceeded(limit), request_id, log)
            log.warning(f"Rate limit '{limit.reason}' exceeded but enforcement is disabled; continuing")

        # --- CALLING SERVICE ---
        log.info(f"Calling research service (accuracy_level={request.accuracy_level}, query_length={len(request.research_query)}, estimated_cost_usd={estimate.estimated_cost_usd})")
        started = time.perf_counter()
        try:
            response = await self.client.perform_research(request, request_id, log)
        except IncompleteResponseError as e:
            billed = calculate_cost(request.accuracy_level, e.usage, log)
            usage = e.usage.total_tokens if e.usage else 0
            self.rate_limiter.record_request(client_id, request.accuracy_level, billed.estimated_cost_usd, usage)
            log.warning(f"Research incomplete after {time.perf_counter() - started:.2f}s; caller should retry")
            return self._internal_failure(e, request_id, retryable=True)
        except Exception as e:
            log.error(f"Research request failed ({type(e).__name__}): {e}", exc_info=True)
            return self._internal_failure(e, request_id)

        elapsed = round(time.perf_counter() - started, 3)
        response = response.model_copy(update={"execution_time_seconds": elapsed})
        self.rate_limiter.record_request(client_id, request.accuracy_level, response.cost_info.estimated_cost_usd, response.token_usage.total_tokens)

        log.info(f"Research completed successfully (execution_time_seconds={elapsed}, model_used={response.model_used}, tokens_used={response.token_usage.total_tokens}, cost_usd={response.cost_info.estimated_cost_usd}, research_confidence={response.research_confidence})")
        return self._success(response, request_id, limit)

    # ------------------------------------------------------------------ #
    #  Envelopes
    # ------------------------------------------------------------------ #
    def _success(self, response, request_id: str, limit: RateLimitResult) -> Dict[str, Any]:
        body = response.model_dump(exclude_none=True)
        envelope = {"success": True}
        envelope.update(body)
        envelope["request_id"] = request_id
        envelope["rate_limit_remaining"] = max(limit.remaining, 0)
        return envelope

    def _validation_failure(self, result, request_id: str, log: logging.LoggerAdapter) -> Dict[str, Any]:
        log.warning(f"Request validation failed: {[e.model_dump() for e in result.errors]}")
        return {
            "success": False,
            "error": f"Request validation failed: {result.summary()}",
            "error_type": "validation_error",
            "request_id": request_id,
            "timestamp": utc_timestamp(),
            "validation_errors": [e.model_dump() for e in result.errors],
        }

    def _rate_limit_failure(self, error: RateLimitExceeded, request_id: str, log: logging.LoggerAdapter) -> Dict[str, Any]:
        limit = error.result
        log.warning(f"Request rejected by rate limiter (reason={limit.reason}, retry_after={epoch_to_iso(limit.retry_after)})")
        return {
            "success": False,
            "error": f"{error}. Try again after {epoch_to_iso(limit.retry_after)}.",
            "error_type": "rate_limit_error",
            "reason": limit.reason,
            "retry_after": epoch_to_iso(limit.retry_after),
            "request_id": request_id,
            "timestamp": utc_timestamp(),
        }

    def _internal_failure(self, error: Exception, request_id: str, retryable: bool = False) -> Dict[str, Any]:
        envelope = {
            "success": False,
            "error": str(error) or "An unexpected error occurred",
            "error_type": "internal_error",
            "request_id": request_id,
            "timestamp": utc_timestamp(),
        }
        if retryable:
            envelope["retryable"] = True
        return envelope
