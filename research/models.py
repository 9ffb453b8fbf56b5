# research/models.py
from dataclasses import dataclass, field
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from research.errors import RequestValidationError, SecurityRejection
from server_config import AccuracyLevel, ResponseFormat

T = TypeVar("T")

MIN_QUERY_LENGTH = 10
MAX_QUERY_LENGTH = 2000


class ResearchRequest(BaseModel):
    """
    A validated `do_deep_research` request.

    Instances are frozen: sanitization derives a new request through
    `with_query()` instead of editing this one.
    """
    model_config = ConfigDict(frozen=True, strict=True, extra="ignore")

    research_query: str
    accuracy_level: AccuracyLevel
    max_tokens: int = Field(default=4000, ge=500, le=8000)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    include_sources: bool = True
    response_format: ResponseFormat = "comprehensive"

    @field_validator("research_query")
    @classmethod
    def check_query(cls, value: str) -> str:
        if len(value) < MIN_QUERY_LENGTH:
            raise PydanticCustomError("too_short", "Research query must be at least 10 characters")
        if len(value) > MAX_QUERY_LENGTH:
            raise PydanticCustomError("too_long", "Research query must not exceed 2000 characters")
        if "<" in value or ">" in value:
            raise PydanticCustomError("invalid_format", "Research query cannot contain HTML/XML tags")
        if len(value.strip()) < MIN_QUERY_LENGTH:
            raise PydanticCustomError("too_short", "Research query must contain meaningful content")
        return value

    def with_query(self, query: str) -> "ResearchRequest":
        return self.model_copy(update={"research_query": query})


class ValidationError(BaseModel):
    field: str
    message: str
    code: str


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    """Either `data` (valid) or a non-empty `errors` list (invalid), never both."""
    valid: bool
    data: Optional[T] = None
    errors: List[ValidationError] = field(default_factory=list)

    def __post_init__(self):
        if self.valid and (self.data is None or self.errors):
            raise ValueError("A valid result carries data and no errors")
        if not self.valid and (self.data is not None or not self.errors):
            raise ValueError("An invalid result carries errors and no data")

    @classmethod
    def ok(cls, data: T) -> "ValidationResult[T]":
        return cls(valid=True, data=data)

    @classmethod
    def fail(cls, errors: List[ValidationError]) -> "ValidationResult[T]":
        return cls(valid=False, errors=list(errors))

    def unwrap(self) -> T:
        """Returns the data or raises the matching validation exception."""
        if self.valid:
            return self.data
        if any(e.code == "security" for e in self.errors):
            raise SecurityRejection(self.errors)
        raise RequestValidationError(self.errors)

    def summary(self) -> str:
        return ", ".join(f"{e.field}: {e.message}" for e in self.errors)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class CostInfo(BaseModel):
    estimated_cost_usd: float = 0.0
    cost_per_1k_tokens: float = 0.0
    billing_tier: Literal["premium", "standard"] = "standard"


class CostEstimate(BaseModel):
    estimated_tokens: int
    estimated_cost_usd: float
    estimated_time_seconds: int


class ResearchResponse(BaseModel):
    """Normalized result of one deep-research call. Assembled once, then only serialized."""
    model_config = ConfigDict(frozen=True)

    research_results: str
    executive_summary: str
    model_used: str
    accuracy_level: AccuracyLevel
    execution_time_seconds: float = 0.0
    sources_found: int = 0
    source_urls: Optional[List[str]] = None
    research_confidence: float
    coverage_completeness: float
    recency_score: float
    related_topics: List[str] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)
    token_usage: TokenUsage
    cost_info: CostInfo
    request_id: str
    timestamp: str


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: float
    cost_remaining: float
    reason: Optional[Literal["hourly_limit", "daily_limit", "cost_limit"]] = None


@dataclass
class UsageStats:
    hourly_requests: int = 0
    daily_cost: float = 0.0
    high_accuracy_requests: int = 0
    medium_accuracy_requests: int = 0
    daily_tokens: int = 0
