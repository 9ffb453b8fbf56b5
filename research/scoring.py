# research/scoring.py
"""
Heuristic metrics derived from research text.

These are string-matching approximations, not measurements: confidence grows with
citation markers, coverage and recency are fixed placeholders, and cost uses the
estimated per-1K-token prices from `MODEL_CONFIGS`. Everything here is a pure
function of its arguments.
"""
import logging
import math
import re
from typing import List, Optional

from research.models import CostEstimate, CostInfo, ResearchRequest, TokenUsage
from server_config import MODEL_CONFIGS, AccuracyLevel
from server_helpers import collapse_whitespace

COVERAGE_COMPLETENESS = 0.85
RECENCY_SCORE = 0.9

BASE_CONFIDENCE = {"high": 0.85, "medium": 0.75}
SOURCE_BONUS_PER_CITATION = 0.02
MAX_SOURCE_BONUS = 0.15

CITATION_RE = re.compile(r"\[\d+\]")
URL_RE = re.compile(r"https?://[^\s)\]>\"']+")
SUMMARY_SECTION_RES = [
    re.compile(rf"^.*?{label}[:\-]?\s*(.*)$", re.IGNORECASE | re.MULTILINE)
    for label in ("summary", "conclusion", "key findings", "overview")
]
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
RELATED_MARKERS = ("related", "also consider", "see also")
BULLET_CHARS_RE = re.compile(r"[-*\d.]")

MAX_SUMMARY_SECTION_CHARS = 500
MAX_SUMMARY_CHARS = 400
MAX_SUMMARY_SENTENCES = 4
MAX_RELATED_TOPICS = 5

COMMON_LIMITATIONS = [
    "Results based on available public information",
    "Information accuracy depends on source reliability",
]

# --------------------------------------------------------------------------- #
#  Sources & confidence
# --------------------------------------------------------------------------- #
def count_sources(content: str) -> int:
    """Number of `[n]` citation markers, repeats included."""
    return len(CITATION_RE.findall(content))

def calculate_confidence(accuracy_level: AccuracyLevel, sources_found: int) -> float:
    bonus = min(sources_found * SOURCE_BONUS_PER_CITATION, MAX_SOURCE_BONUS)
    return min(BASE_CONFIDENCE[accuracy_level] + bonus, 1.0)

def extract_source_urls(content: str) -> List[str]:
    """Distinct http(s) URLs in order of first appearance, trailing punctuation trimmed."""
    urls: List[str] = []
    for match in URL_RE.findall(content):
        url = match.rstrip(".,;:!?")
        if url not in urls:
            urls.append(url)
    return urls

# --------------------------------------------------------------------------- #
#  Cost
# --------------------------------------------------------------------------- #
def calculate_cost(accuracy_level: AccuracyLevel, usage: Optional[TokenUsage], logger: Optional[logging.LoggerAdapter] = None) -> CostInfo:
    """
    Estimated cost of a finished call.

    Never raises; any problem yields a zeroed `CostInfo` so the response can still
    be returned.
    """
    try:
        config = MODEL_CONFIGS[accuracy_level]
        total_tokens = usage.total_tokens if usage else 0
        return CostInfo(
            estimated_cost_usd=round(total_tokens / 1000 * config["cost_per_1k_tokens"], 4),
            cost_per_1k_tokens=config["cost_per_1k_tokens"],
            billing_tier=config["billing_tier"],
        )
    except Exception as e:
        if logger:
            logger.error(f"Cost calculation failed, using zero cost: {e}", exc_info=True)
        return CostInfo()

def estimate_request_cost(request: ResearchRequest) -> CostEstimate:
    """Pre-flight estimate: ~4 characters per input token plus the full output budget."""
    config = MODEL_CONFIGS[request.accuracy_level]
    tokens = math.ceil(len(request.research_query) / 4) + request.max_tokens
    return CostEstimate(
        estimated_tokens=tokens,
        estimated_cost_usd=round(tokens / 1000 * config["cost_per_1k_tokens"], 4),
        estimated_time_seconds=config["typical_response_time_seconds"],
    )

# --------------------------------------------------------------------------- #
#  Summary, related topics, limitations
# --------------------------------------------------------------------------- #
def generate_executive_summary(content: str) -> str:
    if not content or not content.strip():
        return "No research content available for summary."

    for pattern in SUMMARY_SECTION_RES:
        match = pattern.search(content)
        if match and len(match.group(1).strip()) > 100:
            return match.group(1).strip()[:MAX_SUMMARY_SECTION_CHARS]

    flat = collapse_whitespace(content)
    sentences = [s.strip() for s in SENTENCE_SPLIT_RE.split(flat) if len(s.strip()) > 30]
    if not sentences:
        return "Research content available but could not generate meaningful summary."

    summary = ""
    for sentence in sentences[:MAX_SUMMARY_SENTENCES]:
        addition = (". " if summary else "") + sentence
        if len(summary + addition) > MAX_SUMMARY_CHARS:
            break
        summary += addition

    if not summary:
        return "Research completed but summary extraction failed."
    if summary[-1] not in ".!?":
        summary += "."
    return summary

def extract_related_topics(content: str) -> List[str]:
    topics = []
    for line in content.split("\n"):
        if any(marker in line for marker in RELATED_MARKERS):
            topic = BULLET_CHARS_RE.sub("", line).strip()
            if 10 < len(topic) < 100:
                topics.append(topic)
    return topics[:MAX_RELATED_TOPICS]

def generate_limitations(accuracy_level: AccuracyLevel) -> List[str]:
    limitations = list(COMMON_LIMITATIONS)
    if accuracy_level == "medium":
        limitations.append("Faster processing may result in less comprehensive analysis")
    return limitations
