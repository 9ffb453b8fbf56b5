# mcp_server.py
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from mcp.server.fastmcp import FastMCP

from research import (DeepResearchClient, ResearchRateLimiter,
                      ResearchRequestHandler, RequestValidator)
from server_config import ConfigurationError, Settings, configure_logging, load_settings
from server_helpers import build_openai_client, get_logger

MOCK_KEY_PREFIX = "sk-test-mock"


def build_handler(settings: Settings, openai_client: Any = None) -> ResearchRequestHandler:
    """Wires validator, research client and rate limiter into one request handler."""
    client = DeepResearchClient(openai_client or build_openai_client(settings), get_logger("client"))
    return ResearchRequestHandler(
        validator=RequestValidator(get_logger("validation"), defaults=settings.request_defaults()),
        client=client,
        rate_limiter=ResearchRateLimiter(settings, get_logger("rate_limiter")),
        settings=settings,
        logger=get_logger("handler"),
    )


def should_validate_connection(settings: Settings) -> bool:
    return settings.validate_connection and not settings.openai_api_key.startswith(MOCK_KEY_PREFIX)


def server_lifespan(settings: Settings, handler: ResearchRequestHandler):
    """
    Startup/shutdown for the server: probes the OpenAI connection (unless disabled
    or running with a mock key) and owns the rate limiter's sweep task.
    """
    logger = get_logger("server")

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
        if should_validate_connection(settings):
            await handler.client.validate_connection()
        else:
            logger.info("Skipping OpenAI connection validation")
        handler.rate_limiter.start()
        logger.info(f"{settings.server_name} v{settings.server_version} ready")
        try:
            yield {"handler": handler}
        finally:
            await handler.rate_limiter.close()
            logger.info("Server shut down")

    return lifespan


def create_server(settings: Settings, handler: Optional[ResearchRequestHandler] = None) -> FastMCP:
    """Builds the FastMCP server exposing `do_deep_research`."""
    handler = handler or build_handler(settings)
    mcp = FastMCP(settings.server_name, lifespan=server_lifespan(settings, handler))

    @mcp.tool()
    async def do_deep_research(
        research_query: str,
        accuracy_level: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        include_sources: Optional[bool] = None,
        response_format: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Conduct in-depth web research with OpenAI's deep research models.

        accuracy_level: 'high' (o3-deep-research, slower, premium) | 'medium' (o4-mini-deep-research, faster)
        max_tokens: 500-8000 (default 4000). temperature: 0.0-1.0 (default 0.3).
        response_format: 'comprehensive' | 'summary' | 'bullet_points'
        Returns a JSON object with `success` plus either the research results or an error.
        """
        return await handler.handle({
            "research_query": research_query,
            "accuracy_level": accuracy_level,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "include_sources": include_sources,
            "response_format": response_format,
        })

    return mcp


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        raise SystemExit(str(e))
    configure_logging(settings)
    # stdio transport; logs go to stderr
    create_server(settings).run()


if __name__ == "__main__":
    main()
