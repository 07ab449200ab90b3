"""
Core data model for Contract RAG.

Documents flow through split -> filter -> embed -> store as Chunk and
EmbeddingRecord instances. ContractReview carries the fields the report
composer reads when building fallback content.
"""

import uuid
from enum import Enum
from datetime import datetime
from dataclasses import dataclass, field
from typing import Optional


class DocumentType(Enum):
    """Closed set of document classifications used for splitter/filter dispatch."""
    STATUTE = "statute"
    CONTRACT_TEMPLATE = "contract_template"
    CONTRACT_INSTANCE = "contract_instance"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "DocumentType":
        """Resolve an enum member from a member, name or value; unknown -> OTHER."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip()
            for member in cls:
                if key.upper() == member.name or key.lower() == member.value:
                    return member
        return cls.OTHER


class RiskLevel(Enum):
    """Overall risk grade assigned to a contract review."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def short_label(self) -> str:
        return {"HIGH": "高", "MEDIUM": "中", "LOW": "低"}[self.value]

    @property
    def display_name(self) -> str:
        return {"HIGH": "高风险", "MEDIUM": "中等风险", "LOW": "低风险"}[self.value]


class ReviewStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Metadata keys every persisted embedding record must carry
REQUIRED_METADATA_FIELDS = ("doc_id", "filename", "doc_type", "chunk_index")

# Fixed namespace so record ids are stable across runs
CHUNK_ID_NAMESPACE = uuid.UUID("6f1c2b9e-4a57-5d0e-9c1a-2f7d3e8b4c60")


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Deterministic record id for (document id, chunk index)."""
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, f"{document_id}:{chunk_index}"))


def missing_metadata_fields(metadata: Optional[dict]) -> list[str]:
    """Return required metadata fields that are absent or blank."""
    missing = []
    for key in REQUIRED_METADATA_FIELDS:
        value = (metadata or {}).get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(key)
    return missing


@dataclass
class Document:
    """A source document awaiting ingestion."""
    id: str
    text: str
    doc_type: DocumentType = DocumentType.OTHER
    filename: str = ""
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.doc_type = DocumentType.parse(self.doc_type)


@dataclass
class Chunk:
    """A contiguous span of a document, the unit of embedding and storage."""
    text: str
    index: int
    document_id: str
    metadata: dict = field(default_factory=dict)

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass
class EmbeddingRecord:
    """Chunk text plus its vector and the metadata needed to find it again."""
    content: str
    vector: list[float]
    metadata: dict

    @property
    def record_id(self) -> str:
        return make_chunk_id(self.metadata["doc_id"], self.metadata["chunk_index"])

    @property
    def doc_id(self) -> str:
        return self.metadata["doc_id"]

    @property
    def chunk_index(self) -> int:
        return self.metadata["chunk_index"]

    def missing_fields(self) -> list[str]:
        return missing_metadata_fields(self.metadata)

    def is_complete(self) -> bool:
        return not self.missing_fields() and bool(self.vector)

    def to_dict(self) -> dict:
        return {
            "id": self.record_id,
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass
class RiskClause:
    """A single risky clause identified during review."""
    risk_type: str
    risk_level: Optional[RiskLevel] = None
    clause_text: str = ""
    risk_description: str = ""
    suggestion: str = ""


@dataclass
class ContractReview:
    """The review record read by the report composer."""
    filename: str
    content_text: str = ""
    risk_level: Optional[RiskLevel] = None
    total_risks: int = 0
    id: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.COMPLETED
    file_size: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    risk_clauses: list[RiskClause] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.risk_level, str):
            try:
                self.risk_level = RiskLevel(self.risk_level.upper())
            except ValueError:
                self.risk_level = None


@dataclass
class ProcessingResult:
    """Outcome of ingesting a single document."""
    document_id: str
    success: bool
    message: str
    chunk_count: int = 0
    splitter_type: str = ""
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "success": self.success,
            "message": self.message,
            "chunk_count": self.chunk_count,
            "splitter_type": self.splitter_type,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BatchProcessingResult:
    """Aggregate outcome of a batch ingestion."""
    total: int
    succeeded: int
    failed: int
    total_chunks: int
    duration_ms: int
    results: list[ProcessingResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0
