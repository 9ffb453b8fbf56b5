# research/extraction.py
import logging
from typing import Any, Callable, List, Optional

from research.models import TokenUsage

NO_CONTENT = "No content returned from OpenAI"

# --------------------------------------------------------------------------- #
#  Field access
# --------------------------------------------------------------------------- #
def field_of(obj: Any, name: str, default: Any = None) -> Any:
    """Reads `name` from either a mapping or an SDK object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)

def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None

def response_keys(response: Any) -> List[str]:
    if isinstance(response, dict):
        return list(response)
    fields = getattr(type(response), "model_fields", None)
    if fields:
        return list(fields)
    return [k for k in getattr(response, "__dict__", {}) if not k.startswith("_")]

# --------------------------------------------------------------------------- #
#  Extractors, tried in order; each returns text or None
# --------------------------------------------------------------------------- #
def from_output_text(response: Any) -> Optional[str]:
    text = _text(field_of(response, "output_text"))
    return text.strip() if text else None

def from_output_items(response: Any) -> Optional[str]:
    output = field_of(response, "output")
    if not isinstance(output, (list, tuple)):
        return None
    for item in output:
        content = field_of(item, "content")
        if field_of(item, "type") != "message" or not isinstance(content, (list, tuple)):
            continue
        for part in content:
            if field_of(part, "type") in ("output_text", "text"):
                text = _text(field_of(part, "text"))
                if text:
                    return text
    return None

def from_top_level_fields(response: Any) -> Optional[str]:
    for name in ("text", "content"):
        text = _text(field_of(response, name))
        if text:
            return text
    return None

EXTRACTORS: List[Callable[[Any], Optional[str]]] = [from_output_text, from_output_items, from_top_level_fields]


def extract_usage(response: Any) -> TokenUsage:
    usage = field_of(response, "usage")
    if usage is None:
        return TokenUsage()

    def count(name: str) -> int:
        value = field_of(usage, name, 0)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0

    return TokenUsage(input_tokens=count("input_tokens"), output_tokens=count("output_tokens"), total_tokens=count("total_tokens"))


def extract_content(response: Any, logger: logging.LoggerAdapter) -> str:
    """
    Pulls the report text out of a Responses API result.

    The SDK convenience field is tried first, then message items in `output`, then
    bare `text`/`content` fields. When every extractor comes up empty the result is
    never an empty string: a diagnostic placeholder is returned if the model billed
    output tokens (logged as an error), otherwise a plain "no content" marker.
    """
    for extractor in EXTRACTORS:
        content = extractor(response)
        if content:
            logger.debug(f"Content extracted via {extractor.__name__} ({len(content)} chars)")
            return content

    output_tokens = extract_usage(response).output_tokens
    if output_tokens > 0:
        keys = response_keys(response)
        logger.error(f"Content extraction failed despite token usage (output_tokens={output_tokens}, response_keys={keys}, status={field_of(response, 'status')})")
        return f"[Content parsing error: OpenAI generated {output_tokens} tokens but content extraction failed. Response structure: {keys}]"

    logger.warning("OpenAI returned no content and no output tokens")
    return NO_CONTENT
