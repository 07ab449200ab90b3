"""
Pydantic schemas for the three structured report sections.

JSON keys are camelCase (the shape the model is prompted to emit); Python
attributes are snake_case. Every field is optional so a partially filled
response still parses and the validator decides whether it is usable.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Accepted spellings for the three risk grades
RISK_LEVEL_ALIASES = {
    "高": "高", "高风险": "高", "high": "高",
    "中": "中", "中等": "中", "中风险": "中", "中等风险": "中", "medium": "中",
    "低": "低", "低风险": "低", "low": "低",
}


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return value


class ReportModel(BaseModel):
    """Base for report schemas: camelCase aliases, snake_case names accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class ExecutiveSummary(ReportModel):
    """Top-of-report verdict."""
    contract_type: Optional[str] = None
    risk_level: Optional[str] = None
    risk_reason: Optional[str] = None
    core_risks: list[str] = Field(default_factory=list)
    action_suggestions: list[str] = Field(default_factory=list)

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk_level(cls, value):
        if isinstance(value, str):
            return RISK_LEVEL_ALIASES.get(value.strip().lower(), value.strip())
        return value

    @field_validator("core_risks", "action_suggestions", mode="before")
    @classmethod
    def coerce_list(cls, value):
        return _as_list(value)


class LegalNature(ReportModel):
    contract_type: Optional[str] = None
    governing_laws: list[str] = Field(default_factory=list)
    legal_relationship: Optional[str] = None

    @field_validator("governing_laws", mode="before")
    @classmethod
    def coerce_list(cls, value):
        return _as_list(value)


class KeyClause(ReportModel):
    clause_name: Optional[str] = None
    interpretation: Optional[str] = None
    risk: Optional[str] = None


class RiskAssessment(ReportModel):
    risk_category: Optional[str] = None
    level: Optional[str] = None
    description: Optional[str] = None
    prevention: Optional[str] = None


class ComplianceCheck(ReportModel):
    regulation: Optional[str] = None
    conformity: Optional[str] = None
    gaps: list[str] = Field(default_factory=list)

    @field_validator("gaps", mode="before")
    @classmethod
    def coerce_list(cls, value):
        return _as_list(value)


class BusinessImpact(ReportModel):
    party: Optional[str] = None
    impact: Optional[str] = None
    financial_impact: Optional[str] = None


class DeepAnalysis(ReportModel):
    """Clause-level legal analysis."""
    legal_nature: Optional[LegalNature] = None
    key_clauses: list[KeyClause] = Field(default_factory=list)
    risk_assessments: list[RiskAssessment] = Field(default_factory=list)
    compliance_check: Optional[ComplianceCheck] = None
    business_impact: Optional[BusinessImpact] = None


class Suggestion(ReportModel):
    priority: Optional[str] = None
    problem_description: Optional[str] = None
    suggested_modification: Optional[str] = None
    expected_effect: Optional[str] = None


class ImprovementSuggestions(ReportModel):
    """Ordered list of proposed contract changes."""
    suggestions: list[Suggestion] = Field(default_factory=list)


# =============================================================================
# Section resolution: Generated(value) | Fallback(value)
# =============================================================================

@dataclass(frozen=True)
class Generated:
    """A section produced by the model that passed validation."""
    value: Any
    is_fallback: ClassVar[bool] = False


@dataclass(frozen=True)
class Fallback:
    """A deterministically constructed section substituted for generated content."""
    value: Any
    reason: str = ""
    is_fallback: ClassVar[bool] = True


SectionOutcome = Union[Generated, Fallback]
