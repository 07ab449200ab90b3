"""
Structural validation and hygiene for generated report sections.

The section predicates never raise: anything unexpected counts as invalid
and sends the section down the fallback path.
"""

import logging

from .patterns import (
    INTERNAL_INFO_PATTERNS,
    INVALID_CONTENT_KEYWORDS,
    SENTENCE_SPLIT_PATTERN,
)
from .report_models import DeepAnalysis, ExecutiveSummary, ImprovementSuggestions

logger = logging.getLogger(__name__)

VALID_RISK_LEVELS = frozenset({"高", "中", "低"})

MIN_SENTENCE_LENGTH = 5
# Deduplicated text shorter than this share of the original is discarded
MIN_DEDUP_RATIO = 0.3


def _blank(value) -> bool:
    return value is None or not str(value).strip()


class ContentValidator:
    """One completeness predicate per report section."""

    def is_valid_executive_summary(self, summary: ExecutiveSummary) -> bool:
        try:
            return (
                summary is not None
                and summary.risk_level in VALID_RISK_LEVELS
                and not _blank(summary.risk_reason)
                and any(not _blank(r) for r in summary.core_risks)
                and any(not _blank(s) for s in summary.action_suggestions)
            )
        except Exception as e:
            logger.debug(f"Executive summary validation error: {e}")
            return False

    def is_valid_deep_analysis(self, analysis: DeepAnalysis) -> bool:
        # A partially populated analysis is still worth showing
        try:
            return (
                analysis is not None
                and analysis.legal_nature is not None
                and not _blank(analysis.legal_nature.contract_type)
            )
        except Exception as e:
            logger.debug(f"Deep analysis validation error: {e}")
            return False

    def is_valid_improvement_suggestions(self, improvements: ImprovementSuggestions) -> bool:
        try:
            return (
                improvements is not None
                and len(improvements.suggestions) > 0
                and all(
                    s is not None
                    and not _blank(s.problem_description)
                    and not _blank(s.suggested_modification)
                    for s in improvements.suggestions
                )
            )
        except Exception as e:
            logger.debug(f"Improvement suggestions validation error: {e}")
            return False


def contains_refusal(text: str) -> bool:
    """True if the text contains a model refusal or boilerplate disclaimer."""
    if not text:
        return False
    return any(keyword in text for keyword in INVALID_CONTENT_KEYWORDS)


def strip_internal_info(text: str) -> str:
    """Remove model/provider names and leaked prompt markers."""
    if not text:
        return text
    cleaned = text
    for pattern in INTERNAL_INFO_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def remove_duplicate_content(text: str) -> str:
    """
    Drop repeated sentences from generated text.

    Sentences shorter than five characters are discarded as noise. The text
    is returned unchanged when nothing repeats, or when deduplication would
    leave less than 30% of it.
    """
    if not text or not text.strip():
        return text

    sentences = [s.strip() for s in SENTENCE_SPLIT_PATTERN.split(text)]
    sentences = [s for s in sentences if len(s) >= MIN_SENTENCE_LENGTH]

    seen = set()
    unique = []
    for sentence in sentences:
        if sentence not in seen:
            seen.add(sentence)
            unique.append(sentence)

    if len(unique) == len(sentences):
        return text

    result = "。".join(unique) + "。" if unique else ""
    if len(result) < len(text) * MIN_DEDUP_RATIO:
        return text
    return result
