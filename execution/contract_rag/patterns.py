"""
Pattern Definitions for Contract RAG

All regex patterns, filename keywords, prompt templates and report labels.
Modules import from here instead of defining patterns inline.
"""

import re

# =============================================================================
# Statute Structure Markers
# =============================================================================

CN_NUMERALS = "一二三四五六七八九十百千零〇"

ARTICLE_PATTERN = re.compile(rf"第[{CN_NUMERALS}]+条")

# Line-anchored markers used to detect an article start while scanning
ARTICLE_LINE_PATTERN = re.compile(rf"^\s*(第[{CN_NUMERALS}]+条)\s*(.*)$")

HIERARCHY_PATTERNS = {
    "book": re.compile(rf"^\s*(第[{CN_NUMERALS}]+编)\s*(.*)$"),
    "chapter": re.compile(rf"^\s*(第[{CN_NUMERALS}]+章)\s*(.*)$"),
    "section": re.compile(rf"^\s*(第[{CN_NUMERALS}]+节)\s*(.*)$"),
}

# Separators tried in order when an article exceeds the size limit
STATUTE_SEPARATORS = ["\n\n", "。", "；", "，"]

# =============================================================================
# Contract Clause Markers
# =============================================================================

CLAUSE_PATTERNS = [
    re.compile(rf"^\s*第[{CN_NUMERALS}\d]+条"),
    re.compile(rf"^\s*第[{CN_NUMERALS}\d]+款"),
    re.compile(rf"^\s*第[{CN_NUMERALS}\d]+章"),
    re.compile(r"^\s*\d+[.、)）]"),
]

# Sentence terminators used when choosing a window end
SENTENCE_BOUNDARY_CHARS = "。！？；!?;.\n"

# =============================================================================
# Filename Classification Keywords
# =============================================================================

DOCTYPE_KEYWORDS = {
    "statute": ["法", "law", "法律", "法规", "条例", "规定", "规章", "办法", "细则"],
    "contract": ["合同", "contract", "协议", "agreement", "契约", "条款", "terms"],
    "template": ["模板", "范本", "template", "示范"],
}

# =============================================================================
# Quality Heuristics
# =============================================================================

PUNCTUATION_CHARS = "。！？；，.!?;,"

CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")

# =============================================================================
# Generated Content Hygiene
# =============================================================================

# Refusal and boilerplate phrases that mark generated text as unusable
INVALID_CONTENT_KEYWORDS = [
    "我无法分析",
    "我不能提供",
    "作为AI模型",
    "作为人工智能",
    "很抱歉",
    "抱歉，我",
    "无法完成",
    "I cannot",
    "As an AI",
]

# Provider/model names and prompt leakage stripped from generated text
INTERNAL_INFO_PATTERNS = [
    re.compile(r"(?i)deepseek[A-Za-z0-9_\-.:]*"),
    re.compile(r"(?i)openai"),
    re.compile(r"(?i)qwen[A-Za-z0-9_\-./:]*"),
    re.compile(r"(?i)nvidia\s*nim"),
    re.compile(r"(?i)prompt\s*[:：]"),
    re.compile(r"(?i)system\s*[:：]"),
]

SENTENCE_SPLIT_PATTERN = re.compile(r"[。！？；\n]+")

JSON_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

# =============================================================================
# LLM Prompt Templates
# =============================================================================

LLM_PROMPTS = {
    "executive_summary": (
        "你是一名资深合同审查律师。请根据以下合同内容和初步审查结果，"
        "生成合同审查报告的【执行摘要】。\n\n"
        "文件名：{file_name}\n"
        "初步风险等级：{risk_level}\n"
        "识别的风险点数量：{total_risks}\n\n"
        "合同内容：\n{content}\n\n"
        "请严格按照以下JSON格式输出，不要输出任何其他内容：\n"
        "{{\n"
        '  "contractType": "合同类型",\n'
        '  "riskLevel": "高/中/低",\n'
        '  "riskReason": "风险等级判定理由",\n'
        '  "coreRisks": ["核心风险1", "核心风险2"],\n'
        '  "actionSuggestions": ["行动建议1", "行动建议2"]\n'
        "}}"
    ),
    "deep_analysis": (
        "你是一名资深合同审查律师。请对以下合同进行【深度法律分析】。\n\n"
        "文件名：{file_name}\n"
        "初步风险等级：{risk_level}\n"
        "识别的风险点数量：{total_risks}\n\n"
        "合同内容：\n{content}\n\n"
        "请严格按照以下JSON格式输出，不要输出任何其他内容：\n"
        "{{\n"
        '  "legalNature": {{"contractType": "", "governingLaws": [""], "legalRelationship": ""}},\n'
        '  "keyClauses": [{{"clauseName": "", "interpretation": "", "risk": ""}}],\n'
        '  "riskAssessments": [{{"riskCategory": "", "level": "高/中/低", "description": "", "prevention": ""}}],\n'
        '  "complianceCheck": {{"regulation": "", "conformity": "", "gaps": [""]}},\n'
        '  "businessImpact": {{"party": "", "impact": "", "financialImpact": ""}}\n'
        "}}"
    ),
    "improvement_suggestions": (
        "你是一名资深合同审查律师。请针对以下合同提出【改进建议】。\n\n"
        "文件名：{file_name}\n"
        "初步风险等级：{risk_level}\n"
        "识别的风险点数量：{total_risks}\n\n"
        "合同内容：\n{content}\n\n"
        "请严格按照以下JSON格式输出，不要输出任何其他内容：\n"
        "{{\n"
        '  "suggestions": [\n'
        '    {{"priority": "高/中/低", "problemDescription": "", '
        '"suggestedModification": "", "expectedEffect": ""}}\n'
        "  ]\n"
        "}}"
    ),
}

TRUNCATION_SUFFIX = "...[已截取]"

# =============================================================================
# Report Labels
# =============================================================================

LABELS = {
    "unknown": "未知",
    "unassessed": "未评估",
    "report_title": "合同审查报告",
    "fallback_notice": "（AI生成内容暂不可用，以下为基于系统基础分析的内容）",
}

RISK_DESCRIPTIONS = {
    "HIGH": "建议谨慎处理，必要时寻求专业法律意见。",
    "MEDIUM": "存在一定风险，建议关注相关条款。",
    "LOW": "风险较低，但仍需注意合同执行。",
}

RISK_ICONS = {
    "HIGH": "🔴",
    "MEDIUM": "🟡",
    "LOW": "🟢",
}

REVIEW_STATUS_LABELS = {
    "PENDING": "待处理",
    "PROCESSING": "处理中",
    "COMPLETED": "已完成",
    "FAILED": "处理失败",
}
