# research/client.py
import logging
from typing import Any, Optional

import openai

from research.errors import ExternalServiceError, IncompleteResponseError
from research.extraction import extract_content, extract_usage, field_of
from research.models import ResearchRequest, ResearchResponse
from research.scoring import (COVERAGE_COMPLETENESS, RECENCY_SCORE,
                              calculate_confidence, calculate_cost,
                              count_sources, extract_related_topics,
                              extract_source_urls, generate_executive_summary,
                              generate_limitations)
from server_config import MODEL_CONFIGS, PROMPTS, WEB_SEARCH_TOOL, AccuracyLevel
from server_helpers import utc_timestamp


class DeepResearchClient:
    """
    Issues one Responses API call per research request and normalizes the result.

    The client never retries on its own; the SDK transport owns timeouts and retry
    attempts. An `incomplete` status fails fast with `IncompleteResponseError`
    instead of polling, and every SDK or parsing failure surfaces as an
    `ExternalServiceError`.
    """
    def __init__(self, openai_client: Any, logger: logging.LoggerAdapter):
        self.openai = openai_client
        self.logger = logger

    def get_model_for_accuracy(self, accuracy_level: AccuracyLevel) -> str:
        return MODEL_CONFIGS[accuracy_level]["model_name"]

    async def validate_connection(self) -> bool:
        """Lists models once to confirm the credentials work."""
        try:
            await self.openai.models.list()
            self.logger.info("OpenAI connection validated successfully")
            return True
        except openai.OpenAIError as e:
            self.logger.error(f"OpenAI connection validation failed: {e}")
            raise ExternalServiceError.from_openai(e) from e

    async def perform_research(self, request: ResearchRequest, request_id: str, logger: Optional[logging.LoggerAdapter] = None) -> ResearchResponse:
        """
        Runs one deep-research call for an already validated and sanitized request.

        Args:
            request: The request whose `research_query` is sent verbatim.
            request_id: Correlation id echoed in the response.
            logger: Optional request-scoped logger; defaults to the client's own.

        Returns:
            A ResearchResponse with `execution_time_seconds` left at 0 for the caller to fill in.

        Raises:
            IncompleteResponseError: The model reported `status="incomplete"`.
            ExternalServiceError: The API call failed or its result could not be processed.
        """
        log = logger or self.logger
        model_name = self.get_model_for_accuracy(request.accuracy_level)
        log.info(f"Starting deep research with model '{model_name}' (query_length={len(request.research_query)}, response_format={request.response_format})")
        log.debug(f"Sampling settings (max_tokens={request.max_tokens}, temperature={request.temperature}) are not forwarded to deep-research models")

        try:
            response = await self.openai.responses.create(
                model=model_name,
                input=request.research_query,
                instructions=PROMPTS.FORMAT_INSTRUCTIONS[request.response_format],
                tools=[dict(WEB_SEARCH_TOOL)],
            )
        except openai.OpenAIError as e:
            wrapped = ExternalServiceError.from_openai(e)
            log.error(f"OpenAI Responses API call failed (kind={wrapped.kind}, status_code={wrapped.status_code}): {e}")
            raise wrapped from e

        status = field_of(response, "status")
        log.info(f"OpenAI API call returned (response_id={field_of(response, 'id')}, status={status})")

        if status == "incomplete":
            usage = extract_usage(response)
            reason = field_of(field_of(response, "incomplete_details"), "reason")
            log.warning(f"Research response incomplete (reason={reason}, output_tokens={usage.output_tokens})")
            raise IncompleteResponseError(
                "Research is still in progress or was cut short. Please try again in a few minutes.",
                usage=usage,
            )

        try:
            return self._build_response(request, request_id, model_name, response, log)
        except Exception as e:
            log.error(f"Failed to process research response: {e}", exc_info=True)
            raise ExternalServiceError(f"OpenAI Deep Research failed: could not process response ({e})", kind="parse_error") from e

    def _build_response(self, request: ResearchRequest, request_id: str, model_name: str, response: Any, log: logging.LoggerAdapter) -> ResearchResponse:
        content = extract_content(response, log)
        usage = extract_usage(response)
        cost_info = calculate_cost(request.accuracy_level, usage, log)
        sources_found = count_sources(content)

        result = ResearchResponse(
            research_results=content,
            executive_summary=generate_executive_summary(content),
            model_used=model_name,
            accuracy_level=request.accuracy_level,
            sources_found=sources_found,
            source_urls=extract_source_urls(content) if request.include_sources else None,
            research_confidence=calculate_confidence(request.accuracy_level, sources_found),
            coverage_completeness=COVERAGE_COMPLETENESS,
            recency_score=RECENCY_SCORE,
            related_topics=extract_related_topics(content),
            limitations=generate_limitations(request.accuracy_level),
            token_usage=usage,
            cost_info=cost_info,
            request_id=request_id,
            timestamp=utc_timestamp(),
        )
        log.info(f"Deep research completed (content_length={len(content)}, sources_found={sources_found}, total_tokens={usage.total_tokens}, cost_usd={cost_info.estimated_cost_usd})")
        return result
