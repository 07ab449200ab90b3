"""
Deterministic fallback sections.

Built only from the review's risk level, risk count and filename, so a
report can always be produced when the model is unavailable or returns
unusable content.
"""

from .models import ContractReview, RiskLevel
from .report_models import (
    DeepAnalysis,
    ExecutiveSummary,
    ImprovementSuggestions,
    LegalNature,
    RiskAssessment,
    Suggestion,
)

WITHHOLD_SIGNING_SUGGESTION = "建议暂缓签署，立即咨询专业法律顾问"
RISK_ACCEPTABLE_SUGGESTION = "合同风险较低，可考虑签署"
NEEDS_REVIEW_SUGGESTION = "建议与对方协商修改关键风险条款"

ACTION_SUGGESTIONS = {
    RiskLevel.HIGH: [WITHHOLD_SIGNING_SUGGESTION, "对所有高风险条款进行修订后再签署"],
    RiskLevel.MEDIUM: [NEEDS_REVIEW_SUGGESTION, "在履约过程中加强监控"],
    RiskLevel.LOW: [RISK_ACCEPTABLE_SUGGESTION, "仍需注意合同执行过程中的规范性"],
}

UNAVAILABLE_CONTRACT_TYPE = "合同类型分析暂时不可用"
FALLBACK_RISK_REASON = "基于系统基础分析的风险评估结果"


def _policy_level(review: ContractReview) -> RiskLevel:
    # Unassessed reviews get the neutral "needs review" policy
    return review.risk_level or RiskLevel.MEDIUM


def build_executive_summary(review: ContractReview) -> ExecutiveSummary:
    level = _policy_level(review)
    total = review.total_risks or 0

    if total > 0:
        core_risks = [f"系统共识别 {total} 个潜在风险点"]
    else:
        core_risks = ["系统未识别到明显风险点，建议人工复核关键条款"]

    return ExecutiveSummary(
        contract_type=UNAVAILABLE_CONTRACT_TYPE,
        risk_level=level.short_label,
        risk_reason=FALLBACK_RISK_REASON,
        core_risks=core_risks,
        action_suggestions=list(ACTION_SUGGESTIONS[level]),
    )


def build_deep_analysis(review: ContractReview) -> DeepAnalysis:
    level = _policy_level(review)
    total = review.total_risks or 0
    return DeepAnalysis(
        legal_nature=LegalNature(contract_type=UNAVAILABLE_CONTRACT_TYPE),
        risk_assessments=[
            RiskAssessment(
                risk_category="综合风险",
                level=level.short_label,
                description=f"AI深度分析服务暂时不可用。系统基础分析共识别 {total} 个潜在风险点。",
                prevention=ACTION_SUGGESTIONS[level][0],
            )
        ],
    )


def build_improvement_suggestions(review: ContractReview) -> ImprovementSuggestions:
    level = _policy_level(review)
    suggestions = [
        Suggestion(
            priority="高",
            problem_description="建议获取完整的AI深度分析",
            suggested_modification="请稍后重新生成报告以获取完整的AI深度分析和改进建议",
            expected_effect="获得更专业、详细的合同分析和改进建议",
        ),
        Suggestion(
            priority="高",
            problem_description="建议咨询专业法律顾问",
            suggested_modification="针对识别的风险点，建议聘请专业法律顾问进行详细评估",
            expected_effect="确保合同的法律有效性和风险可控性",
        ),
    ]
    if level == RiskLevel.HIGH:
        suggestions.insert(0, Suggestion(
            priority="高",
            problem_description="合同整体风险等级为高",
            suggested_modification=WITHHOLD_SIGNING_SUGGESTION,
            expected_effect="避免在风险未消除前承担合同义务",
        ))
    return ImprovementSuggestions(suggestions=suggestions)
