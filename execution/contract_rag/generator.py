"""
Structured Report Content Generator

Builds a JSON-output prompt for each report section, calls the generative
model and parses the reply into the section's pydantic schema.

This module applies no fallback logic: a model failure or an unparseable
reply raises GenerationError and the caller decides what to do.
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError as SchemaValidationError

from .config import ReportConfig
from .exceptions import GenerationError
from .models import ContractReview
from .patterns import JSON_FENCE_PATTERN, LABELS, LLM_PROMPTS, TRUNCATION_SUFFIX
from .report_models import (
    DeepAnalysis,
    ExecutiveSummary,
    ImprovementSuggestions,
    ReportModel,
)
from .validator import contains_refusal, remove_duplicate_content, strip_internal_info

logger = logging.getLogger(__name__)


class StructuredContentGenerator:
    """
    Generates the executive summary, deep analysis and improvement
    suggestions for a contract review.

    Args:
        llm_client: Any object with ``generate(prompt) -> str``
        config: Report settings (content truncation, cleaning)
    """

    def __init__(self, llm_client, config: Optional[ReportConfig] = None):
        self.llm = llm_client
        self.config = config or ReportConfig()

    def generate_executive_summary(self, review: ContractReview) -> ExecutiveSummary:
        return self._generate("executive_summary", review, ExecutiveSummary)

    def generate_deep_analysis(self, review: ContractReview) -> DeepAnalysis:
        return self._generate("deep_analysis", review, DeepAnalysis)

    def generate_improvement_suggestions(self, review: ContractReview) -> ImprovementSuggestions:
        return self._generate("improvement_suggestions", review, ImprovementSuggestions)

    # -------------------------------------------------------------------------

    def build_prompt(self, section: str, review: ContractReview) -> str:
        """Fill the section's prompt template from the review."""
        template = LLM_PROMPTS[section]
        return template.format(
            file_name=review.filename or LABELS["unknown"],
            risk_level=review.risk_level.display_name if review.risk_level else LABELS["unassessed"],
            total_risks=review.total_risks or 0,
            content=self._truncate(review.content_text or ""),
        )

    def _truncate(self, content: str) -> str:
        limit = self.config.max_content_chars
        if len(content) <= limit:
            return content
        return content[:limit] + TRUNCATION_SUFFIX

    def _generate(self, section: str, review: ContractReview, schema: type):
        prompt = self.build_prompt(section, review)
        logger.debug(f"Generating {section} for {review.filename} ({len(prompt)} prompt chars)")

        try:
            raw = self.llm.generate(prompt)
        except GenerationError as e:
            e.section = section
            raise
        except Exception as e:
            raise GenerationError(f"{section} generation failed: {e}", section=section) from e

        parsed = self.parse_response(raw, schema, section)
        if self.config.clean_content:
            parsed = self._clean(parsed)
        logger.info(f"Generated {section} for {review.filename}")
        return parsed

    @staticmethod
    def extract_json(raw: str) -> str:
        """Strip code fences and surrounding prose, returning the JSON object text."""
        if raw is None:
            return ""
        text = raw.strip()
        fenced = JSON_FENCE_PATTERN.search(text)
        if fenced:
            text = fenced.group(1).strip()
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            return text[start:end + 1]
        return text

    def parse_response(self, raw: str, schema: type, section: str = ""):
        """
        Parse a model reply into ``schema``.

        Raises:
            GenerationError: If the reply is not a JSON object matching the schema
        """
        payload = self.extract_json(raw)
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            reason = "model refused" if contains_refusal(raw or "") else "invalid JSON"
            raise GenerationError(f"{section} parse failed ({reason}): {e}", section=section) from e

        if not isinstance(data, dict):
            raise GenerationError(f"{section} parse failed: expected a JSON object", section=section)

        try:
            return schema.model_validate(data)
        except SchemaValidationError as e:
            raise GenerationError(f"{section} schema mismatch: {e}", section=section) from e

    def _clean(self, model: ReportModel):
        """Strip leaked internals and repeated sentences from every string field."""
        def clean_value(value):
            if isinstance(value, str):
                return remove_duplicate_content(strip_internal_info(value))
            if isinstance(value, list):
                return [clean_value(v) for v in value]
            if isinstance(value, dict):
                return {k: clean_value(v) for k, v in value.items()}
            return value

        return type(model).model_validate(clean_value(model.model_dump()))
