# main.py
import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console

from mcp_server import build_handler, create_server, should_validate_connection
from server_config import SCRIPT_VERSION, ConfigurationError, configure_logging, load_settings, log


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"OpenAI Deep Research MCP server v{SCRIPT_VERSION}", formatter_class=argparse.RawTextHelpFormatter)
    parser.add_argument("question", nargs="*", help="Research question to run once and print as JSON")
    parser.add_argument("-a", "--accuracy", choices=["high", "medium"], default=None, help="Accuracy level (default: DEFAULT_ACCURACY_LEVEL)")
    parser.add_argument("-f", "--format", dest="response_format", choices=["comprehensive", "summary", "bullet_points"], default=None, help="Response format")
    parser.add_argument("--max-tokens", type=int, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--no-sources", action="store_true", help="Leave source URLs out of the result")
    parser.add_argument("--serve", action="store_true", help="Run the MCP server over stdio")
    args = parser.parse_args(argv)
    if not args.serve and not args.question:
        parser.error("a research question is required unless --serve is given")
    return args


def build_arguments(args: argparse.Namespace, default_accuracy: str) -> Dict[str, Any]:
    return {
        "research_query": " ".join(args.question),
        "accuracy_level": args.accuracy or default_accuracy,
        "max_tokens": args.max_tokens,
        "temperature": args.temperature,
        "include_sources": False if args.no_sources else None,
        "response_format": args.response_format,
    }


async def main_cli(args: argparse.Namespace, console: Console) -> int:
    """Runs a single research request through the server's handler and prints the envelope."""
    settings = load_settings()
    configure_logging(settings)
    handler = build_handler(settings)

    if should_validate_connection(settings):
        await handler.client.validate_connection()

    with console.status("Researching... deep research can take several minutes."):
        envelope = await handler.handle(build_arguments(args, settings.default_accuracy_level))
    await handler.rate_limiter.close()

    console.print_json(json.dumps(envelope))
    return 0 if envelope.get("success") else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    console = Console()

    if args.serve:
        try:
            settings = load_settings()
        except ConfigurationError as e:
            Console(stderr=True).print(f"[bold red]{e}[/bold red]")
            return 2
        configure_logging(settings)
        create_server(settings).run()
        return 0

    try:
        return asyncio.run(main_cli(args, console))
    except ConfigurationError as e:
        Console(stderr=True).print(f"[bold red]{e}[/bold red]")
        return 2
    except KeyboardInterrupt:
        console.print("\n--- Process interrupted by user. Shutting down. ---")
        return 130
    except Exception as e:
        log.error("--- A critical error occurred in the main process ---", exc_info=True)
        Console(stderr=True).print(f"\n[bold red]A critical error occurred: {e}. Please check the logs.[/bold red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
