"""
Report Composer

Resolves each report section to generated or fallback content, then renders
the final report. Every section walks the same state machine:

    NOT_STARTED -> GENERATING -> {VALID, INVALID_OR_FAILED} -> RESOLVED

Sections run concurrently and independently. A section that throws, fails
validation or exceeds its time limit falls back on its own; the other two
are unaffected. generate_markdown_report() always returns report text.
"""

import time
import logging
import threading
from enum import Enum
from datetime import datetime
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from . import fallback
from .config import ReportConfig
from .exceptions import ContentValidationError
from .models import ContractReview
from .renderer import TemplateRenderer, render_emergency_report
from .report_models import Fallback, Generated, SectionOutcome
from .validator import ContentValidator

logger = logging.getLogger(__name__)


class SectionState(Enum):
    NOT_STARTED = "NOT_STARTED"
    GENERATING = "GENERATING"
    VALID = "VALID"
    INVALID_OR_FAILED = "INVALID_OR_FAILED"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class ReportSection:
    """How one section is generated, validated and substituted."""
    name: str
    generate: str   # StructuredContentGenerator method name
    validate: str   # ContentValidator method name
    build_fallback: Callable[[ContractReview], object]


REPORT_SECTIONS = (
    ReportSection(
        "executive_summary",
        "generate_executive_summary",
        "is_valid_executive_summary",
        fallback.build_executive_summary,
    ),
    ReportSection(
        "deep_analysis",
        "generate_deep_analysis",
        "is_valid_deep_analysis",
        fallback.build_deep_analysis,
    ),
    ReportSection(
        "improvement_suggestions",
        "generate_improvement_suggestions",
        "is_valid_improvement_suggestions",
        fallback.build_improvement_suggestions,
    ),
)


@dataclass
class SectionResolution:
    """Progress and final outcome of one section."""
    name: str
    states: list = field(default_factory=lambda: [SectionState.NOT_STARTED])
    outcome: Optional[SectionOutcome] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def state(self) -> SectionState:
        return self.states[-1]

    @property
    def is_fallback(self) -> bool:
        return isinstance(self.outcome, Fallback)

    def advance(self, state: SectionState) -> bool:
        """Record a transition. Ignored once the section is resolved."""
        with self._lock:
            if self.states[-1] == SectionState.RESOLVED:
                return False
            self.states.append(state)
            return True

    def resolve(self, outcome: SectionOutcome) -> None:
        with self._lock:
            if self.states[-1] == SectionState.RESOLVED:
                return
            if isinstance(outcome, Fallback) and self.states[-1] != SectionState.INVALID_OR_FAILED:
                self.states.append(SectionState.INVALID_OR_FAILED)
            self.outcome = outcome
            self.states.append(SectionState.RESOLVED)


@dataclass
class ReportComposition:
    """The three resolved sections for one review."""
    review: ContractReview
    sections: dict

    @property
    def executive_summary(self) -> SectionResolution:
        return self.sections["executive_summary"]

    @property
    def deep_analysis(self) -> SectionResolution:
        return self.sections["deep_analysis"]

    @property
    def improvement_suggestions(self) -> SectionResolution:
        return self.sections["improvement_suggestions"]

    @property
    def fallback_sections(self) -> list[str]:
        return [name for name, section in self.sections.items() if section.is_fallback]


class ReportComposer:
    """
    Composes contract review reports with a generate -> validate -> fallback
    pipeline per section.

    Usage:
        composer = ReportComposer(StructuredContentGenerator(NimLLMClient()))
        markdown = composer.generate_markdown_report(review)
    """

    def __init__(
        self,
        generator,
        validator: Optional[ContentValidator] = None,
        renderer: Optional[TemplateRenderer] = None,
        config: Optional[ReportConfig] = None,
    ):
        self.generator = generator
        self.validator = validator or ContentValidator()
        self.renderer = renderer or TemplateRenderer()
        self.config = config or ReportConfig()

    def compose(self, review: ContractReview) -> ReportComposition:
        """Resolve all three sections; each is bounded by the section timeout."""
        sections = {section.name: SectionResolution(section.name) for section in REPORT_SECTIONS}
        timeout = self.config.section_timeout

        executor = ThreadPoolExecutor(max_workers=len(REPORT_SECTIONS), thread_name_prefix="report-section")
        try:
            futures = {
                section.name: executor.submit(self._attempt, section, review, sections[section.name])
                for section in REPORT_SECTIONS
            }
            deadline = time.monotonic() + timeout

            for section in REPORT_SECTIONS:
                resolution = sections[section.name]
                future = futures[section.name]
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    resolution.resolve(Generated(future.result(timeout=remaining)))
                    continue
                except FutureTimeoutError:
                    future.cancel()
                    reason = f"timed out after {timeout}s"
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"

                logger.warning(f"Section {section.name} for {review.filename} falls back: {reason}")
                resolution.resolve(Fallback(section.build_fallback(review), reason=reason))
        finally:
            # Never wait on a section that overran its budget
            executor.shutdown(wait=False)

        return ReportComposition(review=review, sections=sections)

    def generate_markdown_report(self, review: ContractReview, generated_at: Optional[datetime] = None) -> str:
        """
        Produce the final report text. Never raises and never returns empty text.

        Args:
            review: The contract review to report on
            generated_at: Timestamp printed in the header (defaults to now)
        """
        generated_at = generated_at or datetime.now()

        try:
            composition = self.compose(review)
            report = self.renderer.render(
                review,
                composition.executive_summary.outcome,
                composition.deep_analysis.outcome,
                composition.improvement_suggestions.outcome,
                generated_at=generated_at,
            )
            if report and report.strip():
                fallbacks = composition.fallback_sections
                if fallbacks:
                    logger.info(f"Report for {review.filename} used fallback for: {', '.join(fallbacks)}")
                return report
            logger.error(f"Renderer returned empty report for {review.filename}")
        except Exception as e:
            logger.error(f"Report rendering failed for {getattr(review, 'filename', None)}: {type(e).__name__}: {e}")

        return render_emergency_report(review, generated_at)

    # -------------------------------------------------------------------------

    def _attempt(self, section: ReportSection, review: ContractReview, resolution: SectionResolution):
        """Generate and validate one section. Raises on failure or rejection."""
        resolution.advance(SectionState.GENERATING)
        try:
            value = getattr(self.generator, section.generate)(review)
        except Exception:
            resolution.advance(SectionState.INVALID_OR_FAILED)
            raise

        if not getattr(self.validator, section.validate)(value):
            resolution.advance(SectionState.INVALID_OR_FAILED)
            raise ContentValidationError(f"{section.name} failed validation", section=section.name)

        resolution.advance(SectionState.VALID)
        return value


# CLI for testing
if __name__ == "__main__":
    import sys
    from pathlib import Path
    from dotenv import load_dotenv

    from .generator import StructuredContentGenerator
    from .llm_client import NimLLMClient
    from .models import RiskLevel

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.contract_rag.composer <contract.txt> [HIGH|MEDIUM|LOW]")
        sys.exit(1)

    path = Path(sys.argv[1])
    level = RiskLevel(sys.argv[2].upper()) if len(sys.argv) > 2 else None
    config = ReportConfig.from_env()
    composer = ReportComposer(StructuredContentGenerator(NimLLMClient(config), config), config=config)
    contract_review = ContractReview(
        filename=path.name,
        content_text=path.read_text(encoding="utf-8"),
        risk_level=level,
    )
    print(composer.generate_markdown_report(contract_review))
