"""Markdown rendering of contract review reports."""

import logging
from datetime import datetime
from typing import Optional

from jinja2 import Environment

from .models import ContractReview, RiskLevel
from .patterns import LABELS, REVIEW_STATUS_LABELS, RISK_DESCRIPTIONS, RISK_ICONS
from .report_models import Fallback, Generated

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

REPORT_TEMPLATE = """\
# {{ labels.report_title }}

- **文件名**：{{ header.filename }}
- **风险等级**：{{ header.risk_icon }}{{ header.risk_display }}
- **审查状态**：{{ header.status }}
- **风险点数量**：{{ header.total_risks }}
- **生成时间**：{{ header.generated_at }}
{% if header.completed_at %}
- **审查完成时间**：{{ header.completed_at }}
{% endif %}
{% if header.risk_description %}

> {{ header.risk_description }}
{% endif %}

## 一、执行摘要

{% if summary.fallback %}
{{ labels.fallback_notice }}

{% endif %}
{% if summary.data %}
{% if summary.data.contract_type %}
- **合同类型**：{{ summary.data.contract_type }}
{% endif %}
{% if summary.data.risk_level %}
- **风险等级**：{{ summary.data.risk_level }}
{% endif %}
{% if summary.data.risk_reason %}
- **判定理由**：{{ summary.data.risk_reason }}
{% endif %}
{% if summary.data.core_risks %}

### 核心风险
{% for item in summary.data.core_risks %}
{{ loop.index }}. {{ item }}
{% endfor %}
{% endif %}
{% if summary.data.action_suggestions %}

### 行动建议
{% for item in summary.data.action_suggestions %}
{{ loop.index }}. {{ item }}
{% endfor %}
{% endif %}
{% endif %}
{% if statistics %}

### 风险统计

| 风险等级 | 数量 | 占比 |
| --- | --- | --- |
{% for row in statistics %}
| {{ row.icon }} {{ row.label }} | {{ row.count }} | {{ row.percentage }} |
{% endfor %}
{% endif %}

## 二、深度分析

{% if analysis.fallback %}
{{ labels.fallback_notice }}

{% endif %}
{% if analysis.data %}
{% set nature = analysis.data.legal_nature %}
{% if nature %}
### 法律性质
{% if nature.contract_type %}
- **合同类型**：{{ nature.contract_type }}
{% endif %}
{% if nature.governing_laws %}
- **适用法律**：{{ nature.governing_laws | join("；") }}
{% endif %}
{% if nature.legal_relationship %}
- **法律关系**：{{ nature.legal_relationship }}
{% endif %}
{% endif %}
{% if analysis.data.key_clauses %}

### 关键条款
{% for clause in analysis.data.key_clauses %}
{{ loop.index }}. **{{ clause.clause_name or "未命名条款" }}**{% if clause.interpretation %}：{{ clause.interpretation }}{% endif %}

{% if clause.risk %}
   - 风险：{{ clause.risk }}
{% endif %}
{% endfor %}
{% endif %}
{% if analysis.data.risk_assessments %}

### 风险评估
{% for item in analysis.data.risk_assessments %}
- **{{ item.risk_category or "风险" }}**{% if item.level %}（{{ item.level }}）{% endif %}{% if item.description %}：{{ item.description }}{% endif %}

{% if item.prevention %}
  - 防范措施：{{ item.prevention }}
{% endif %}
{% endfor %}
{% endif %}
{% set compliance = analysis.data.compliance_check %}
{% if compliance and (compliance.regulation or compliance.conformity or compliance.gaps) %}

### 合规检查
{% if compliance.regulation %}
- **相关法规**：{{ compliance.regulation }}
{% endif %}
{% if compliance.conformity %}
- **符合情况**：{{ compliance.conformity }}
{% endif %}
{% for gap in compliance.gaps %}
- 待完善：{{ gap }}
{% endfor %}
{% endif %}
{% set impact = analysis.data.business_impact %}
{% if impact and (impact.party or impact.impact or impact.financial_impact) %}

### 商业影响
{% if impact.party %}
- **影响主体**：{{ impact.party }}
{% endif %}
{% if impact.impact %}
- **影响内容**：{{ impact.impact }}
{% endif %}
{% if impact.financial_impact %}
- **财务影响**：{{ impact.financial_impact }}
{% endif %}
{% endif %}
{% endif %}

## 三、改进建议

{% if improvements.fallback %}
{{ labels.fallback_notice }}

{% endif %}
{% if improvements.data and improvements.data.suggestions %}
{% for item in improvements.data.suggestions %}
### {{ loop.index }}. {{ item.problem_description or "改进事项" }}{% if item.priority %}（优先级：{{ item.priority }}）{% endif %}

{% if item.suggested_modification %}
- **修改建议**：{{ item.suggested_modification }}
{% endif %}
{% if item.expected_effect %}
- **预期效果**：{{ item.expected_effect }}
{% endif %}

{% endfor %}
{% endif %}
{% if clauses %}

## 附录：风险条款明细
{% for clause in clauses %}

{{ loop.index }}. {{ clause.icon }}**{{ clause.risk_type }}**{% if clause.level %}（{{ clause.level }}）{% endif %}

{% if clause.clause_text %}
   - 条款原文：{{ clause.clause_text }}
{% endif %}
{% if clause.risk_description %}
   - 风险说明：{{ clause.risk_description }}
{% endif %}
{% if clause.suggestion %}
   - 修改建议：{{ clause.suggestion }}
{% endif %}
{% endfor %}
{% endif %}

---
*本报告由系统自动生成，仅供参考，不构成正式法律意见。*
"""


def format_timestamp(value: Optional[datetime]) -> str:
    if not value:
        return LABELS["unknown"]
    return value.strftime(TIMESTAMP_FORMAT)


def risk_display_name(level: Optional[RiskLevel]) -> str:
    return level.display_name if level else LABELS["unknown"]


def _unwrap(section) -> tuple[Optional[dict], bool]:
    """Return (section as dict, is_fallback) for a resolution or a bare model."""
    if isinstance(section, (Generated, Fallback)):
        value, fallback = section.value, section.is_fallback
    else:
        value, fallback = section, False

    if value is None:
        return None, fallback
    if hasattr(value, "model_dump"):
        return value.model_dump(), fallback
    if isinstance(value, dict):
        return value, fallback
    return None, fallback


def _risk_statistics(review: ContractReview) -> list[dict]:
    clauses = review.risk_clauses or []
    if not clauses:
        return []
    total = len(clauses)
    rows = []
    for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
        count = sum(1 for c in clauses if c.risk_level == level)
        rows.append({
            "icon": RISK_ICONS[level.value],
            "label": level.display_name,
            "count": count,
            "percentage": f"{count * 100 / total:.1f}%",
        })
    return rows


def render_emergency_report(review: ContractReview, generated_at: Optional[datetime] = None) -> str:
    """Plain report used when template rendering itself fails."""
    filename = (review.filename if review else None) or LABELS["unknown"]
    level = review.risk_level if review else None
    total = (review.total_risks if review else 0) or 0
    return (
        f"# {LABELS['report_title']}\n\n"
        f"- **文件名**：{filename}\n"
        f"- **风险等级**：{risk_display_name(level)}\n"
        f"- **风险点数量**：{total}\n"
        f"- **生成时间**：{format_timestamp(generated_at or datetime.now())}\n\n"
        "报告内容生成失败，请稍后重新生成或咨询专业法律顾问。\n"
    )


class TemplateRenderer:
    """
    Renders the final Markdown report from a review and its three sections.

    Each section may be a Generated/Fallback resolution, a bare section
    model, or None. Missing fields are simply left out of the output.
    """

    def __init__(self, template: str = REPORT_TEMPLATE):
        self._env = Environment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._template = self._env.from_string(template)

    def render(
        self,
        review: ContractReview,
        executive_summary=None,
        deep_analysis=None,
        improvements=None,
        generated_at: Optional[datetime] = None,
    ) -> str:
        summary_data, summary_fallback = _unwrap(executive_summary)
        analysis_data, analysis_fallback = _unwrap(deep_analysis)
        improvements_data, improvements_fallback = _unwrap(improvements)

        level = review.risk_level
        status = getattr(review.review_status, "value", review.review_status)

        header = {
            "filename": review.filename or LABELS["unknown"],
            "risk_display": risk_display_name(level),
            "risk_icon": f"{RISK_ICONS[level.value]} " if level else "",
            "risk_description": RISK_DESCRIPTIONS.get(level.value) if level else None,
            "status": REVIEW_STATUS_LABELS.get(status, LABELS["unknown"]),
            "total_risks": review.total_risks or 0,
            "generated_at": format_timestamp(generated_at or datetime.now()),
            "completed_at": format_timestamp(review.completed_at) if review.completed_at else None,
        }

        clauses = [
            {
                "icon": f"{RISK_ICONS[c.risk_level.value]} " if c.risk_level else "",
                "risk_type": c.risk_type or "风险条款",
                "level": c.risk_level.display_name if c.risk_level else None,
                "clause_text": c.clause_text,
                "risk_description": c.risk_description,
                "suggestion": c.suggestion,
            }
            for c in (review.risk_clauses or [])
        ]

        return self._template.render(
            labels=LABELS,
            header=header,
            summary={"data": summary_data, "fallback": summary_fallback},
            analysis={"data": analysis_data, "fallback": analysis_fallback},
            improvements={"data": improvements_data, "fallback": improvements_fallback},
            statistics=_risk_statistics(review),
            clauses=clauses,
        )
