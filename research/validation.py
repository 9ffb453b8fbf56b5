# research/validation.py
import logging
import re
from typing import Any, Dict, List, Optional

import pydantic

from research.models import MAX_QUERY_LENGTH, ResearchRequest, ValidationError, ValidationResult
from server_config import CLIENT_ID_PATTERN
from server_helpers import collapse_whitespace

# pydantic error type -> code reported to the caller
ERROR_CODES = {
    "missing": "required",
    "literal_error": "invalid_enum",
    "greater_than_equal": "out_of_range",
    "less_than_equal": "out_of_range",
    "greater_than": "out_of_range",
    "less_than": "out_of_range",
    "int_type": "invalid_type",
    "int_from_float": "invalid_type",
    "float_type": "invalid_type",
    "bool_type": "invalid_type",
    "string_type": "invalid_type",
    "model_type": "invalid_type",
}

FIELD_MESSAGES = {
    ("accuracy_level", "invalid_enum"): "Accuracy level must be either 'high' or 'medium'",
    ("response_format", "invalid_enum"): "Response format must be 'comprehensive', 'summary', or 'bullet_points'",
    ("max_tokens", "out_of_range"): "Max tokens must be between 500 and 8000",
    ("max_tokens", "invalid_type"): "Max tokens must be an integer",
    ("temperature", "out_of_range"): "Temperature must be between 0 and 1",
    ("temperature", "invalid_type"): "Temperature must be a number",
    ("include_sources", "invalid_type"): "Include sources must be a boolean",
}

DANGEROUS_PATTERNS = [
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"eval\(", re.IGNORECASE),
    re.compile(r"function\s*\(", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
]
SPECIAL_CHARS = re.compile(r"[^a-zA-Z0-9\s.,!?;:()\-'\"]")
REPEATED_SEQUENCE = re.compile(r"(.{3,})\1{3,}", re.DOTALL)
MAX_SPECIAL_CHAR_RATIO = 0.2

TECHNICAL_TERMS = [
    "analysis", "comparison", "evaluation", "methodology", "framework",
    "implementation", "architecture", "algorithm", "optimization",
    "research", "study", "investigation", "assessment", "review",
]
TOPIC_INDICATORS = ["and", "or", "versus", "vs", "compared to", "as well as"]

TAG_PATTERN = re.compile(r"<[^>]*>")
PROTOCOL_PATTERN = re.compile(r"javascript:|data:text/html", re.IGNORECASE)
CLIENT_ID_RE = re.compile(CLIENT_ID_PATTERN)


def assess_query_complexity(query: str) -> str:
    """Scores lexical complexity of a query as 'low', 'medium' or 'high'."""
    score = 0
    if len(query) > 200: score += 2
    elif len(query) > 100: score += 1

    question_count = query.count("?")
    if question_count > 3: score += 2
    elif question_count > 1: score += 1

    lowered = query.lower()
    term_count = sum(1 for term in TECHNICAL_TERMS if term in lowered)
    if term_count > 3: score += 2
    elif term_count > 1: score += 1

    topic_count = sum(1 for indicator in TOPIC_INDICATORS if indicator in lowered)
    if topic_count > 2: score += 2
    elif topic_count > 0: score += 1

    if score >= 5: return "high"
    if score >= 2: return "medium"
    return "low"


class RequestValidator:
    """
    Validates and sanitizes incoming research requests.

    Checks run in three stages (schema, business rules, content safety) and the
    first stage that fails decides the result. The validator is stateless apart
    from its logger and the defaults it applies to omitted optional fields.
    """
    def __init__(self, logger: logging.LoggerAdapter, defaults: Optional[Dict[str, Any]] = None):
        self.logger = logger
        self.defaults = dict(defaults or {})

    def validate(self, raw: Any) -> ValidationResult[ResearchRequest]:
        """
        Validates a raw tool payload into a `ResearchRequest`.

        Args:
            raw: The arguments as received from the caller; anything but a mapping is rejected.

        Returns:
            A ValidationResult holding either the request or the errors of the first failing stage.
        """
        if not isinstance(raw, dict):
            errors = [ValidationError(field="request", message="Request must be an object", code="invalid_type")]
            self.logger.warning(f"Research request validation failed: {errors[0].message}")
            return ValidationResult.fail(errors)

        payload = {k: v for k, v in raw.items() if v is not None}
        for key, value in self.defaults.items():
            payload.setdefault(key, value)

        try:
            request = ResearchRequest.model_validate(payload)
        except pydantic.ValidationError as e:
            errors = [self._convert_error(err) for err in e.errors()]
            self.logger.warning(f"Research request validation failed: {[err.model_dump() for err in errors]}")
            return ValidationResult.fail(errors)

        business = self.validate_business_rules(request)
        if not business.valid:
            self.logger.warning(f"Research request failed business rules: {business.summary()}")
            return business

        safety = self.validate_content_safety(request.research_query)
        if not safety.valid:
            self.logger.warning(f"Research query rejected by content safety check: {[e.code for e in safety.errors]}")
            return ValidationResult.fail(safety.errors)

        self.logger.debug(f"Research request validation passed (query_length={len(request.research_query)}, accuracy_level={request.accuracy_level}, max_tokens={request.max_tokens})")
        return ValidationResult.ok(request)

    def _convert_error(self, err: Dict[str, Any]) -> ValidationError:
        field = ".".join(str(part) for part in err["loc"]) or "request"
        code = ERROR_CODES.get(err["type"], err["type"])
        message = FIELD_MESSAGES.get((field, code))
        if message is None:
            message = "Required field is missing" if code == "required" else err["msg"]
        return ValidationError(field=field, message=message, code=code)

    def validate_business_rules(self, request: ResearchRequest) -> ValidationResult[ResearchRequest]:
        """Cross-field checks; only the high-accuracy rules block, complexity is advisory."""
        errors: List[ValidationError] = []
        if request.accuracy_level == "high" and request.max_tokens < 2000:
            errors.append(ValidationError(
                field="max_tokens",
                message="High accuracy research typically requires at least 2000 tokens for quality results",
                code="business_rule",
            ))
        if request.accuracy_level == "high" and request.temperature > 0.5:
            errors.append(ValidationError(
                field="temperature",
                message="High accuracy research works best with lower temperature (<= 0.5)",
                code="business_rule",
            ))

        complexity = assess_query_complexity(request.research_query)
        if request.accuracy_level == "medium" and complexity == "high":
            self.logger.warning(f"Complex query with medium accuracy level: '{request.research_query[:100]}'")

        if errors:
            return ValidationResult.fail(errors)
        return ValidationResult.ok(request)

    def validate_content_safety(self, query: str) -> ValidationResult[str]:
        """Rejects injection patterns (`security`), symbol-heavy text (`format`) and repetition spam (`spam`)."""
        errors: List[ValidationError] = []
        if any(pattern.search(query) for pattern in DANGEROUS_PATTERNS):
            errors.append(ValidationError(field="research_query", message="Research query contains potentially unsafe content", code="security"))

        special_count = len(SPECIAL_CHARS.findall(query))
        if special_count > len(query) * MAX_SPECIAL_CHAR_RATIO:
            errors.append(ValidationError(field="research_query", message="Research query contains too many special characters", code="format"))

        if REPEATED_SEQUENCE.search(query):
            errors.append(ValidationError(field="research_query", message="Research query contains excessive repetition", code="spam"))

        if errors:
            return ValidationResult.fail(errors)
        return ValidationResult.ok(query)

    def sanitize_query(self, query: str) -> str:
        """
        Cleans a validated query before it is sent downstream.

        Tags and script/data protocols are removed until none remain, whitespace is
        collapsed, and the result is capped at the maximum query length. Applying it
        to its own output returns the same string.
        """
        sanitized = query
        while True:
            cleaned = PROTOCOL_PATTERN.sub("", TAG_PATTERN.sub("", sanitized))
            if cleaned == sanitized:
                break
            sanitized = cleaned
        sanitized = collapse_whitespace(sanitized)

        if len(sanitized) > MAX_QUERY_LENGTH:
            sanitized = sanitized[:MAX_QUERY_LENGTH].rstrip()
            self.logger.warning(f"Research query truncated for safety (original_length={len(query)}, truncated_length={len(sanitized)})")
        return sanitized

    def validate_client_id(self, client_id: Any) -> ValidationResult[str]:
        if not client_id or not isinstance(client_id, str):
            return ValidationResult.fail([ValidationError(field="client_id", message="Client ID is required and must be a string", code="required")])
        if len(client_id) < 3 or len(client_id) > 100:
            return ValidationResult.fail([ValidationError(field="client_id", message="Client ID must be between 3 and 100 characters", code="length")])
        if not CLIENT_ID_RE.fullmatch(client_id):
            return ValidationResult.fail([ValidationError(
                field="client_id",
                message="Client ID can only contain alphanumeric characters, underscores, hyphens, and periods",
                code="format",
            )])
        return ValidationResult.ok(client_id)
