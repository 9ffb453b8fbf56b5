# server_config.py
import logging
import os
from typing import Dict, List, Literal, Optional

import dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from rich.console import Console
from rich.logging import RichHandler

AccuracyLevel = Literal["high", "medium"]
ResponseFormat = Literal["comprehensive", "summary", "bullet_points"]

SCRIPT_VERSION = "1.0.0"
CLIENT_ID_PATTERN = r"^[A-Za-z0-9_.\-]+$"


class ConfigurationError(Exception):
    """Raised when the environment does not describe a usable server configuration."""
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Configuration validation failed:\n" + "\n".join(self.errors))


# --------------------------------------------------------------------------- #
#  Configuration
# --------------------------------------------------------------------------- #
class Settings(BaseModel):
    """
    Flat, immutable server configuration.

    Built once by `load_settings()` and handed to every component constructor.
    Range checks run eagerly so a bad environment fails before the first request.
    """
    model_config = ConfigDict(frozen=True)

    # --- OPENAI ---
    openai_api_key: str = Field(min_length=1)
    openai_org_id: Optional[str] = None
    openai_project_id: Optional[str] = None
    openai_base_url: Optional[str] = None
    request_timeout_seconds: float = Field(default=600.0, ge=10)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    validate_connection: bool = True

    # --- RATE LIMITS ---
    requests_per_hour: int = Field(default=10, ge=1, le=1000)
    requests_per_day: int = Field(default=30, ge=1, le=10_000)
    tokens_per_day: int = Field(default=100_000, ge=1)
    daily_cost_limit_usd: float = Field(default=25.0, ge=0.01, le=1000)
    high_accuracy_hourly_limit: int = Field(default=3, ge=1)
    medium_accuracy_hourly_limit: int = Field(default=6, ge=1)
    high_accuracy_daily_limit: int = Field(default=8, ge=1)
    medium_accuracy_daily_limit: int = Field(default=15, ge=1)
    rate_limit_enforced: bool = True
    sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # --- SERVER ---
    server_name: str = "openai-deep-research-mcp-server"
    server_version: str = SCRIPT_VERSION
    log_level: str = "INFO"
    log_file: Optional[str] = None
    default_client_id: str = Field(default="default_client", min_length=3, max_length=100, pattern=CLIENT_ID_PATTERN)

    # --- REQUEST DEFAULTS ---
    default_accuracy_level: AccuracyLevel = "medium"
    default_max_tokens: int = Field(default=4000, ge=500, le=8000)
    default_temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    default_include_sources: bool = True
    default_response_format: ResponseFormat = "comprehensive"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = str(value).strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError("Log level must be one of: debug, info, warning, error")
        return level

    @field_validator("openai_org_id", "openai_project_id", "openai_base_url", "log_file", mode="before")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def check_limit_consistency(self) -> "Settings":
        problems = []
        if self.high_accuracy_daily_limit > self.requests_per_day:
            problems.append("High accuracy daily limit cannot exceed total daily requests")
        if self.medium_accuracy_daily_limit > self.requests_per_day:
            problems.append("Medium accuracy daily limit cannot exceed total daily requests")
        if self.high_accuracy_hourly_limit > self.requests_per_hour:
            problems.append("High accuracy hourly limit cannot exceed total hourly requests")
        if self.medium_accuracy_hourly_limit > self.requests_per_hour:
            problems.append("Medium accuracy hourly limit cannot exceed total hourly requests")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def hourly_limit(self, accuracy_level: AccuracyLevel) -> int:
        return self.high_accuracy_hourly_limit if accuracy_level == "high" else self.medium_accuracy_hourly_limit

    def daily_limit(self, accuracy_level: AccuracyLevel) -> int:
        return self.high_accuracy_daily_limit if accuracy_level == "high" else self.medium_accuracy_daily_limit

    def request_defaults(self) -> Dict[str, object]:
        """Values used for optional tool arguments the caller left out."""
        return {
            "max_tokens": self.default_max_tokens,
            "temperature": self.default_temperature,
            "include_sources": self.default_include_sources,
            "response_format": self.default_response_format,
        }


ENV_VARS = {
    "openai_api_key": "OPENAI_API_KEY",
    "openai_org_id": "OPENAI_ORG_ID",
    "openai_project_id": "OPENAI_PROJECT_ID",
    "openai_base_url": "OPENAI_BASE_URL",
    "request_timeout_seconds": "REQUEST_TIMEOUT_SECONDS",
    "retry_attempts": "RETRY_ATTEMPTS",
    "validate_connection": "VALIDATE_CONNECTION",
    "requests_per_hour": "MAX_REQUESTS_PER_HOUR",
    "requests_per_day": "MAX_REQUESTS_PER_DAY",
    "tokens_per_day": "MAX_TOKENS_PER_DAY",
    "daily_cost_limit_usd": "MAX_DAILY_COST_USD",
    "high_accuracy_hourly_limit": "HIGH_ACCURACY_HOURLY_LIMIT",
    "medium_accuracy_hourly_limit": "MEDIUM_ACCURACY_HOURLY_LIMIT",
    "high_accuracy_daily_limit": "HIGH_ACCURACY_DAILY_LIMIT",
    "medium_accuracy_daily_limit": "MEDIUM_ACCURACY_DAILY_LIMIT",
    "rate_limit_enforced": "RATE_LIMIT_ENFORCED",
    "sweep_interval_seconds": "RATE_LIMIT_SWEEP_SECONDS",
    "server_name": "SERVER_NAME",
    "server_version": "SERVER_VERSION",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "default_client_id": "DEFAULT_CLIENT_ID",
    "default_accuracy_level": "DEFAULT_ACCURACY_LEVEL",
    "default_max_tokens": "DEFAULT_MAX_TOKENS",
    "default_temperature": "DEFAULT_TEMPERATURE",
    "default_include_sources": "DEFAULT_INCLUDE_SOURCES",
    "default_response_format": "DEFAULT_RESPONSE_FORMAT",
}


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Reads the environment (after loading `.env`) into a validated `Settings`.

    Args:
        environ: Mapping to read instead of `os.environ`; `.env` is not loaded when given.

    Raises:
        ConfigurationError: listing every invalid or missing value.
    """
    if environ is None:
        dotenv.load_dotenv()
        environ = dict(os.environ)
    raw = {field: environ[var] for field, var in ENV_VARS.items() if environ.get(var) is not None}
    try:
        return Settings(**raw)
    except ValidationError as e:
        errors = []
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"])
            label = ENV_VARS.get(field, field) if field else "settings"
            errors.append(f"{label}: {err['msg']}")
        raise ConfigurationError(errors) from e


# --------------------------------------------------------------------------- #
#  Models & Pricing
# --------------------------------------------------------------------------- #
# Estimated per-1K-token prices; not published list prices.
MODEL_CONFIGS = {
    "high": {
        "model_name": "o3-deep-research",
        "cost_per_1k_tokens": 0.02,
        "billing_tier": "premium",
        "typical_response_time_seconds": 240,
    },
    "medium": {
        "model_name": "o4-mini-deep-research",
        "cost_per_1k_tokens": 0.006,
        "billing_tier": "standard",
        "typical_response_time_seconds": 90,
    },
}

WEB_SEARCH_TOOL = {"type": "web_search_preview"}


class PROMPTS:
    """Instruction strings sent alongside the research query, keyed by response format."""
    FORMAT_INSTRUCTIONS = {
        "comprehensive": "Produce a thorough research report with clear sections. Cite every claim inline with numbered markers like [1] and list the cited sources with their URLs at the end.",
        "summary": "Produce a concise research summary of the most important findings. Cite claims inline with numbered markers like [1] and list the cited sources with their URLs at the end.",
        "bullet_points": "Present the research findings as grouped bullet points. Cite claims inline with numbered markers like [1] and list the cited sources with their URLs at the end.",
    }


# --------------------------------------------------------------------------- #
#  Logging
# --------------------------------------------------------------------------- #
log_format = "%(asctime)s | %(name)-26s | %(levelname)-8s | %(message)s"
log = logging.getLogger("deep-research")


def configure_logging(settings: Settings) -> logging.Logger:
    """
    Sends project logs to stderr through rich, plus an optional plain log file.

    stdout is reserved for the MCP stdio transport, so nothing here may write to it.
    """
    log.setLevel(getattr(logging, settings.log_level))
    log.handlers.clear()
    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=True, show_level=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s | %(message)s"))
    log.addHandler(handler)
    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        log.addHandler(file_handler)
    log.propagate = False
    for noisy in ("httpx", "httpcore", "openai", "anyio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return log
