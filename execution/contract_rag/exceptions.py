"""
Error taxonomy for Contract RAG.

Generative and embedding failures are expected and recovered locally
(chunk skip or section fallback). Storage failures propagate.
"""

from typing import Optional


class ContractRagError(Exception):
    """Base class for all errors raised by the package."""

    code: str = "CONTRACT_RAG_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class ContentValidationError(ContractRagError):
    """A generated section is malformed or structurally incomplete."""

    code = "CONTENT_INVALID"

    def __init__(self, message: str, section: str):
        super().__init__(message)
        self.section = section


class EmbeddingProviderError(ContractRagError):
    """A single embedding call failed."""

    code = "EMBEDDING_FAILED"

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class GenerationError(ContractRagError):
    """The generative model call failed, timed out, or returned unparseable output."""

    code = "GENERATION_FAILED"

    def __init__(self, message: str, section: Optional[str] = None):
        super().__init__(message)
        self.section = section


class VectorStoreError(ContractRagError):
    """The vector store is unreachable or rejected a write."""

    code = "VECTOR_STORE_ERROR"

    def __init__(self, message: str, operation: str = "db_operation"):
        super().__init__(message)
        self.operation = operation


class DocumentNotFoundError(ContractRagError):
    """Raised when reprocessing an id the document registry does not know."""

    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id
