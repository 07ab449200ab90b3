"""
Structure-Aware Document Splitting

Turns raw document text into ordered chunk strings. The strategy is chosen
by document type through a lookup table:

- STATUTE: segments on article markers (第X条), tracking book/chapter/section
  headings so every chunk knows where it sits in the statute. Over-long
  articles are split recursively on paragraph/sentence/clause punctuation.
- Everything else: fixed-size character windows with overlap, ending on a
  sentence boundary when one is close by.

Splitting is deterministic: the same text always yields the same chunks.
"""

import re
import logging
from typing import Optional

from .config import ProcessingConfig
from .models import Chunk, Document, DocumentType
from .patterns import (
    ARTICLE_LINE_PATTERN,
    ARTICLE_PATTERN,
    CLAUSE_PATTERNS,
    DOCTYPE_KEYWORDS,
    HIERARCHY_PATTERNS,
    SENTENCE_BOUNDARY_CHARS,
    STATUTE_SEPARATORS,
)

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class DocumentSplitter:
    """Base splitter. Subclasses implement split_with_metadata()."""

    name: str = "base"

    def split(self, text: str) -> list[str]:
        """Split text into ordered chunk strings."""
        return [segment for segment, _ in self.split_with_metadata(text)]

    def split_with_metadata(self, text: str) -> list[tuple[str, dict]]:
        """Split text into (chunk text, splitter metadata) pairs."""
        raise NotImplementedError("Subclasses must implement split_with_metadata()")


class FixedWindowSplitter(DocumentSplitter):
    """
    Generic splitter producing overlapping fixed-size character windows.

    A window is pulled back to the last sentence terminator inside its
    final ``boundary_window`` characters so chunks rarely cut mid-sentence.
    """

    name = "fixed_window"

    def __init__(self, chunk_size: int = 800, chunk_overlap: int = 80, boundary_window: int = 100):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.boundary_window = boundary_window

    def split_with_metadata(self, text: str) -> list[tuple[str, dict]]:
        return [(window, {}) for window in self._windows(text)]

    def _windows(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []

        chunks = []
        length = len(text)
        start = 0
        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._find_boundary(text, start, end)

            piece = text[start:end].strip()
            if piece:
                chunks.append(piece)
            if end >= length:
                break

            next_start = end - self.chunk_overlap
            # Always make forward progress
            start = next_start if next_start > start else end

        return chunks

    def _find_boundary(self, text: str, start: int, end: int) -> int:
        """Return the position just after the last sentence terminator near ``end``."""
        floor = max(start + 1, end - self.boundary_window)
        for pos in range(end - 1, floor - 1, -1):
            if text[pos] in SENTENCE_BOUNDARY_CHARS:
                return pos + 1
        return end


class StatuteSplitter(DocumentSplitter):
    """
    Splits statute text on article markers (第X条).

    Heading lines (第X编 / 第X章 / 第X节) are not emitted as chunks; they
    update the hierarchy recorded in each article's metadata as
    ``hierarchy_path`` ("编 > 章 > 节 > 条").
    """

    name = "statute"

    def __init__(self, max_chars: int = 1536, overlap_chars: int = 50):
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars

    def split_with_metadata(self, text: str) -> list[tuple[str, dict]]:
        if not text or not text.strip():
            return []

        if not any(ARTICLE_LINE_PATTERN.match(line) for line in text.splitlines()):
            logger.debug("No article markers found, falling back to paragraph split")
            return self._split_paragraphs(text)

        hierarchy = {"book": None, "chapter": None, "section": None}
        segments = []
        preamble: list[str] = []
        current_lines: list[str] = []
        current_meta: Optional[dict] = None

        def flush():
            if current_meta is None:
                return
            body = "\n".join(current_lines).strip()
            if body:
                segments.extend(self._emit(body, current_meta))

        for line in text.splitlines():
            heading = self._match_heading(line)
            if heading:
                level, label = heading
                flush()
                current_lines, current_meta = [], None
                hierarchy[level] = label
                # A new book resets chapter/section, a new chapter resets section
                if level == "book":
                    hierarchy["chapter"] = None
                    hierarchy["section"] = None
                elif level == "chapter":
                    hierarchy["section"] = None
                continue

            article = ARTICLE_LINE_PATTERN.match(line)
            if article:
                flush()
                article_number = article.group(1)
                path = [h for h in (hierarchy["book"], hierarchy["chapter"], hierarchy["section"]) if h]
                path.append(article_number)
                current_meta = {
                    "article_number": article_number,
                    "hierarchy_path": " > ".join(path),
                }
                current_lines = [line.strip()]
                continue

            if current_meta is not None:
                current_lines.append(line)
            elif line.strip():
                preamble.append(line)

        flush()

        preamble_text = "\n".join(preamble).strip()
        if preamble_text:
            segments = self._emit(preamble_text, {"article_number": None, "hierarchy_path": "序言"}) + segments

        return segments

    def _match_heading(self, line: str) -> Optional[tuple[str, str]]:
        for level, pattern in HIERARCHY_PATTERNS.items():
            match = pattern.match(line)
            if match:
                title = match.group(2).strip()
                label = f"{match.group(1)} {title}" if title else match.group(1)
                return level, label
        return None

    def _emit(self, body: str, meta: dict) -> list[tuple[str, dict]]:
        if len(body) <= self.max_chars:
            return [(body, dict(meta))]
        parts = self._recursive_split(body, STATUTE_SEPARATORS)
        return [
            (part, {**meta, "part": i + 1, "total_parts": len(parts)})
            for i, part in enumerate(parts)
        ]

    def _split_paragraphs(self, text: str) -> list[tuple[str, dict]]:
        segments = []
        for paragraph in PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if paragraph:
                segments.extend(self._emit(paragraph, {"article_number": None, "hierarchy_path": ""}))
        return segments

    def _recursive_split(self, text: str, separators: list[str]) -> list[str]:
        """Split ``text`` into pieces no longer than max_chars plus overlap."""
        if len(text) <= self.max_chars:
            return [text]
        if not separators:
            return self._force_split(text)

        separator, remaining = separators[0], separators[1:]
        if separator not in text:
            return self._recursive_split(text, remaining)

        raw_parts = text.split(separator)
        parts = []
        for i, part in enumerate(raw_parts):
            # Keep sentence punctuation attached to the sentence it ends
            if separator != "\n\n" and i < len(raw_parts) - 1:
                part = part + separator
            if part.strip():
                parts.append(part)

        joiner = "\n\n" if separator == "\n\n" else ""
        pieces = []
        buffer = ""
        for part in parts:
            if len(part) > self.max_chars:
                if buffer:
                    pieces.append(buffer)
                    buffer = ""
                pieces.extend(self._recursive_split(part, remaining))
                continue
            candidate = f"{buffer}{joiner}{part}" if buffer else part
            if len(candidate) <= self.max_chars:
                buffer = candidate
            else:
                pieces.append(buffer)
                buffer = part
        if buffer:
            pieces.append(buffer)

        return self._apply_overlap([p.strip() for p in pieces if p.strip()])

    def _apply_overlap(self, pieces: list[str]) -> list[str]:
        if self.overlap_chars <= 0 or len(pieces) < 2:
            return pieces
        result = [pieces[0]]
        for previous, piece in zip(pieces, pieces[1:]):
            tail = previous[-self.overlap_chars:]
            if piece.startswith(tail):
                result.append(piece)
            else:
                result.append(tail + piece)
        return result

    def _force_split(self, text: str) -> list[str]:
        step = max(1, self.max_chars - self.overlap_chars)
        return [text[i:i + self.max_chars] for i in range(0, len(text), step) if text[i:i + self.max_chars].strip()]


class ContractClauseSplitter(DocumentSplitter):
    """
    Splits contracts on clause markers (第X条, 第X款, 第X章, "1." / "2、").

    Documents with fewer than ``min_markers`` clause lines are treated as
    unstructured and merged paragraph-by-paragraph up to the segment limit.
    Not used by default; opt in with SplitterFactory.register().
    """

    name = "contract_clause"

    def __init__(self, max_segment_chars: int = 2000, context_overlap: int = 200, min_markers: int = 3):
        self.max_segment_chars = max_segment_chars
        self.min_markers = min_markers
        self._window = FixedWindowSplitter(
            chunk_size=max_segment_chars,
            chunk_overlap=min(context_overlap, max_segment_chars - 1),
        )

    @staticmethod
    def _is_clause_line(line: str) -> bool:
        return any(pattern.match(line) for pattern in CLAUSE_PATTERNS)

    def split_with_metadata(self, text: str) -> list[tuple[str, dict]]:
        if not text or not text.strip():
            return []

        lines = text.splitlines()
        marker_count = sum(1 for line in lines if self._is_clause_line(line))
        if marker_count < self.min_markers:
            return [(segment, {"structured": False}) for segment in self._merge_paragraphs(text)]

        segments = []
        current: list[str] = []
        for line in lines:
            if self._is_clause_line(line) and current:
                segments.append("\n".join(current).strip())
                current = []
            current.append(line)
        if current:
            segments.append("\n".join(current).strip())

        result = []
        for segment in segments:
            if not segment:
                continue
            if len(segment) > self.max_segment_chars:
                result.extend((piece, {"structured": True}) for piece in self._window.split(segment))
            else:
                result.append((segment, {"structured": True}))
        return result

    def _merge_paragraphs(self, text: str) -> list[str]:
        merged = []
        buffer = ""
        for paragraph in PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) > self.max_segment_chars:
                if buffer:
                    merged.append(buffer)
                    buffer = ""
                merged.extend(self._window.split(paragraph))
                continue
            candidate = f"{buffer}\n\n{paragraph}" if buffer else paragraph
            if len(candidate) <= self.max_segment_chars:
                buffer = candidate
            else:
                merged.append(buffer)
                buffer = paragraph
        if buffer:
            merged.append(buffer)
        return merged


class SplitterFactory:
    """
    Selects a splitter by document type.

    Usage:
        factory = SplitterFactory()
        chunks = factory.split(text, DocumentType.STATUTE)

        # Opt a type into clause-aware splitting
        factory.register(DocumentType.CONTRACT_INSTANCE, ContractClauseSplitter())
    """

    def __init__(self, config: Optional[ProcessingConfig] = None):
        self.config = config or ProcessingConfig()
        self._generic = FixedWindowSplitter(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            boundary_window=self.config.boundary_window,
        )
        self._splitters: dict = {
            DocumentType.STATUTE: StatuteSplitter(
                max_chars=self.config.statute_max_chars,
                overlap_chars=self.config.statute_overlap_chars,
            ),
        }

    def register(self, doc_type: DocumentType, splitter: DocumentSplitter) -> None:
        """Route ``doc_type`` to ``splitter``."""
        self._splitters[doc_type] = splitter

    def get_splitter(self, doc_type) -> DocumentSplitter:
        """Return the splitter for ``doc_type``; unknown types get the generic splitter."""
        return self._splitters.get(doc_type, self._generic)

    def split(self, text: str, doc_type) -> list[str]:
        return self.get_splitter(doc_type).split(text)

    def split_document(self, document: Document) -> list[Chunk]:
        """Split a document into indexed Chunk objects."""
        splitter = self.get_splitter(document.doc_type)
        segments = splitter.split_with_metadata(document.text)
        return [
            Chunk(
                text=segment,
                index=index,
                document_id=document.id,
                metadata={**meta, "splitter_type": splitter.name},
            )
            for index, (segment, meta) in enumerate(segments)
        ]


def classify_document_type(filename: Optional[str], text: Optional[str] = None) -> DocumentType:
    """
    Classify a document from its filename, falling back to its content.

    Args:
        filename: Source filename (extension is ignored)
        text: Optional raw text, sampled when the filename is inconclusive

    Returns:
        The DocumentType for dispatch
    """
    name = (filename or "").lower()
    stem = name.rsplit(".", 1)[0] if "." in name else name

    # Statute keywords win: "合同法" is a statute, not a contract
    if any(keyword in stem for keyword in DOCTYPE_KEYWORDS["statute"]):
        return DocumentType.STATUTE

    if any(keyword in stem for keyword in DOCTYPE_KEYWORDS["contract"]):
        if any(keyword in stem for keyword in DOCTYPE_KEYWORDS["template"]):
            return DocumentType.CONTRACT_TEMPLATE
        return DocumentType.CONTRACT_INSTANCE

    if text:
        sample = text[:5000]
        if len(ARTICLE_PATTERN.findall(sample)) >= 3:
            return DocumentType.STATUTE

    return DocumentType.OTHER
