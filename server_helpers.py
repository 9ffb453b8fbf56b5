# server_helpers.py
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

from openai import AsyncOpenAI, Timeout

from server_config import Settings, log

# --------------------------------------------------------------------------- #
# 1.  API Client
# --------------------------------------------------------------------------- #
def build_openai_client(settings: Settings) -> AsyncOpenAI:
    """Creates the async OpenAI client; retries and timeouts are owned by the SDK transport."""
    log.debug("Initializing OpenAI client...")
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        organization=settings.openai_org_id,
        project=settings.openai_project_id,
        base_url=settings.openai_base_url,
        timeout=Timeout(settings.request_timeout_seconds),
        max_retries=settings.retry_attempts,
    )

# --------------------------------------------------------------------------- #
# 2.  Context Logging
# --------------------------------------------------------------------------- #
class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that carries structured context fields.

    The fields are attached to every record (`record.context` plus one attribute
    per field) and rendered as a `key=value` prefix so they survive plain-text
    handlers. `child()` scopes a new adapter with extra fields merged in.
    """
    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if not self.extra:
            return msg, kwargs
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        extra["context"] = dict(self.extra)
        kwargs["extra"] = extra
        prefix = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"[{prefix}] {msg}", kwargs

    def child(self, **context: Any) -> "ContextLogger":
        merged = dict(self.extra)
        merged.update(context)
        return ContextLogger(self.logger, merged)


def get_logger(component: str, **context: Any) -> ContextLogger:
    return ContextLogger(log.getChild(component), context)

# --------------------------------------------------------------------------- #
# 3.  Utilities
# --------------------------------------------------------------------------- #
def generate_request_id() -> str:
    """Creation time in milliseconds plus a random suffix, e.g. `req_1718000000000_3f9a1c2be`."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

def epoch_to_iso(seconds: float) -> str:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")

def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
