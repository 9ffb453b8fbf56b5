import pytest

from research.errors import RequestValidationError, SecurityRejection
from research.models import ValidationResult
from research.validation import RequestValidator, assess_query_complexity

VALID_QUERY = "Compare battery chemistries used in grid storage"


@pytest.fixture
def validator(logger, settings):
    return RequestValidator(logger, defaults=settings.request_defaults())


def codes(result):
    return [e.code for e in result.errors]


# --------------------------------------------------------------------------- #
#  Schema
# --------------------------------------------------------------------------- #
def test_valid_request_gets_defaults(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "medium"})
    assert result.valid
    assert result.errors == []
    request = result.data
    assert request.max_tokens == 4000
    assert request.temperature == 0.3
    assert request.include_sources is True
    assert request.response_format == "comprehensive"


def test_none_values_fall_back_to_defaults(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "medium", "max_tokens": None, "response_format": None})
    assert result.valid
    assert result.data.max_tokens == 4000


@pytest.mark.parametrize("query", ["short", "x" * 9, "y" * 2001])
def test_query_length_bounds(validator, query):
    result = validator.validate({"research_query": query, "accuracy_level": "medium"})
    assert not result.valid
    assert result.data is None
    assert [e.field for e in result.errors] == ["research_query"]
    assert codes(result)[0] in ("too_short", "too_long")


def test_whitespace_padded_query_is_too_short(validator):
    result = validator.validate({"research_query": "   abc     \n   ", "accuracy_level": "medium"})
    assert codes(result) == ["too_short"]
    assert result.errors[0].message == "Research query must contain meaningful content"


def test_angle_brackets_rejected_by_schema(validator):
    result = validator.validate({"research_query": "<script>alert(1)</script>", "accuracy_level": "medium"})
    assert not result.valid
    assert result.errors[0].field == "research_query"


def test_missing_and_invalid_fields_reported_per_field(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "low", "max_tokens": 100, "temperature": 2})
    by_field = {e.field: e for e in result.errors}
    assert by_field["accuracy_level"].code == "invalid_enum"
    assert by_field["max_tokens"].code == "out_of_range"
    assert by_field["max_tokens"].message == "Max tokens must be between 500 and 8000"
    assert by_field["temperature"].code == "out_of_range"


def test_missing_accuracy_level(validator):
    result = validator.validate({"research_query": VALID_QUERY})
    assert codes(result) == ["required"]
    assert result.errors[0].field == "accuracy_level"


def test_wrong_type_is_not_coerced(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "medium", "max_tokens": "4000"})
    assert codes(result) == ["invalid_type"]


def test_non_mapping_rejected(validator):
    result = validator.validate(["not", "a", "dict"])
    assert not result.valid
    assert result.errors[0].field == "request"


# --------------------------------------------------------------------------- #
#  Business rules
# --------------------------------------------------------------------------- #
def test_high_accuracy_needs_token_budget(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "high", "max_tokens": 1000})
    assert not result.valid
    assert result.errors[0].field == "max_tokens"
    assert result.errors[0].code == "business_rule"

    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "high", "max_tokens": 3000})
    assert result.valid


def test_high_accuracy_rejects_high_temperature(validator):
    result = validator.validate({"research_query": VALID_QUERY, "accuracy_level": "high", "temperature": 0.8})
    assert [(e.field, e.code) for e in result.errors] == [("temperature", "business_rule")]


def test_complex_query_with_medium_accuracy_only_warns(validator):
    query = ("Provide a comparative analysis and evaluation of the architecture, methodology and implementation "
             "of vector databases versus relational databases, as well as graph stores? What about cost? Latency? Scale?")
    assert assess_query_complexity(query) == "high"
    result = validator.validate({"research_query": query, "accuracy_level": "medium"})
    assert result.valid


@pytest.mark.parametrize("query, expected", [
    ("What is the capital of France", "low"),
    ("Give an analysis and comparison of solar panels", "medium"),
])
def test_assess_query_complexity(query, expected):
    assert assess_query_complexity(query) == expected


# --------------------------------------------------------------------------- #
#  Content safety
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize("query", [
    "please run javascript:alert(1) for me",
    "what does eval(x) do in python",
    "explain function () closures in depth",
    "the onclick = handler in html pages",
    "embed data:text/html payloads safely",
])
def test_injection_patterns_rejected_as_security(validator, query):
    result = validator.validate({"research_query": query, "accuracy_level": "medium"})
    assert "security" in codes(result)


def test_script_tag_flagged_as_security(validator):
    result = validator.validate_content_safety("<script>alert(1)</script>")
    assert "security" in codes(result)
    assert "<" not in validator.sanitize_query("<script>alert(1)</script>")


def test_symbol_heavy_query_rejected_as_format(validator):
    result = validator.validate({"research_query": "Research ### $$$ %%% @@@ ^^^ ***", "accuracy_level": "medium"})
    assert codes(result) == ["format"]


def test_repetition_rejected_as_spam(validator):
    result = validator.validate({"research_query": "buy now buy now buy now buy now buy now", "accuracy_level": "medium"})
    assert "spam" in codes(result)


def test_security_errors_unwrap_to_security_rejection(validator):
    result = validator.validate({"research_query": "please run javascript:alert(1) for me", "accuracy_level": "medium"})
    with pytest.raises(SecurityRejection):
        result.unwrap()


def test_schema_errors_unwrap_to_request_validation_error(validator):
    result = validator.validate({"research_query": "short", "accuracy_level": "medium"})
    with pytest.raises(RequestValidationError) as exc:
        result.unwrap()
    assert "research_query" in str(exc.value)


# --------------------------------------------------------------------------- #
#  Sanitization
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize("raw", [
    "  plain   query\twith \n spacing  ",
    "<b>bold</b> text and <i>italics</i>",
    "<<script>script>alert(1)<</script>/script>",
    "javajavascript:script:alert(1)",
    "DATA:TEXT/HTML,<p>x</p>",
    "<a" + "b" * 2500,
    "word " * 600,
])
def test_sanitize_is_idempotent(validator, raw):
    once = validator.sanitize_query(raw)
    assert validator.sanitize_query(once) == once


def test_sanitize_strips_tags_and_protocols(validator):
    cleaned = validator.sanitize_query("see <b>this</b>  JavaScript:alert(1)   now")
    assert cleaned == "see this alert(1) now"


def test_sanitize_truncates_long_input(validator):
    cleaned = validator.sanitize_query("a" * 2500)
    assert len(cleaned) == 2000


# --------------------------------------------------------------------------- #
#  Client id and result shape
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize("client_id, code", [
    ("", "required"),
    (None, "required"),
    (42, "required"),
    ("ab", "length"),
    ("x" * 101, "length"),
    ("bad id!", "format"),
    ("bad\n", "format"),
])
def test_invalid_client_ids(validator, client_id, code):
    result = validator.validate_client_id(client_id)
    assert codes(result) == [code]


def test_valid_client_id(validator):
    result = validator.validate_client_id("team.alpha-01_x")
    assert result.valid
    assert result.data == "team.alpha-01_x"


def test_validation_result_never_carries_both_branches():
    with pytest.raises(ValueError):
        ValidationResult(valid=True, data=None)
    with pytest.raises(ValueError):
        ValidationResult(valid=False, data="x", errors=[])
