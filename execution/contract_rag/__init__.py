"""
Contract RAG - Legal Document Ingestion and Contract Review Reports

This module provides:
- Structure-aware splitting of statutes (第X条) and contracts
- Type-specific quality filtering, embedding and pgvector storage
- Per-document atomic reprocessing and full rebuilds
- Contract review reports composed through generate -> validate -> fallback,
  so a usable report is produced even when the model fails
"""

from .models import Document, DocumentType, ContractReview, RiskLevel
from .splitter import SplitterFactory, classify_document_type
from .quality_filter import QualityFilter
from .embeddings import get_embedding_service
from .vector_store import VectorStore
from .processor import DocumentProcessor
from .generator import StructuredContentGenerator
from .validator import ContentValidator
from .composer import ReportComposer
from .renderer import TemplateRenderer

__all__ = [
    "Document",
    "DocumentType",
    "ContractReview",
    "RiskLevel",
    "SplitterFactory",
    "classify_document_type",
    "QualityFilter",
    "get_embedding_service",
    "VectorStore",
    "DocumentProcessor",
    "StructuredContentGenerator",
    "ContentValidator",
    "ReportComposer",
    "TemplateRenderer",
]

__version__ = "0.1.0"
