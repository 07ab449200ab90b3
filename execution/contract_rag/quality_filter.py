"""
Chunk Quality Filter

Drops low-value fragments before they are embedded. Each document type has
a minimum length; statutes get a much lower floor because a single article
("第十二条 每年6月5日为环境日。") is legitimately short.
"""

import logging
from typing import Optional

from .config import DEFAULT_MIN_CHUNK_LENGTH, ProcessingConfig
from .models import DocumentType
from .patterns import CJK_PATTERN, PUNCTUATION_CHARS

logger = logging.getLogger(__name__)


class QualityFilter:
    """
    Type-aware keep/drop decision for chunks.

    Usage:
        quality = QualityFilter({DocumentType.STATUTE: 10})
        quality.keep("第十二条 每年6月5日为环境日。", DocumentType.STATUTE)  # True
    """

    def __init__(
        self,
        min_lengths: Optional[dict] = None,
        default_min_length: int = DEFAULT_MIN_CHUNK_LENGTH,
        enable_scoring: bool = False,
    ):
        self.min_lengths = dict(min_lengths) if min_lengths else {}
        self.default_min_length = default_min_length
        self.enable_scoring = enable_scoring

    @classmethod
    def from_config(cls, config: ProcessingConfig) -> "QualityFilter":
        return cls(
            min_lengths=config.min_lengths,
            default_min_length=config.default_min_length,
            enable_scoring=config.enable_quality_filter,
        )

    def min_length_for(self, doc_type) -> int:
        return self.min_lengths.get(doc_type, self.default_min_length)

    def keep(self, chunk_text: Optional[str], doc_type) -> bool:
        """Return True if the chunk should be embedded."""
        if not chunk_text or not chunk_text.strip():
            return False
        return len(chunk_text.strip()) >= self.min_length_for(doc_type)

    def score(self, chunk_text: str, doc_type) -> float:
        """
        Heuristic quality score in [0, 1].

        Penalises short non-statute fragments, very long blobs, text with no
        punctuation, and mixed text that is mostly non-CJK.
        """
        text = (chunk_text or "").strip()
        if not text:
            return 0.0

        score = 1.0
        if doc_type != DocumentType.STATUTE and len(text) < 100:
            score *= 0.7
        if len(text) > 3000:
            score *= 0.8
        if not any(ch in PUNCTUATION_CHARS for ch in text):
            score *= 0.6

        cjk_count = len(CJK_PATTERN.findall(text))
        if cjk_count and cjk_count / len(text) < 0.3:
            score *= 0.7

        return round(score, 4)
