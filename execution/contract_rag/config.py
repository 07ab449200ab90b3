"""
Runtime Configuration for Contract RAG

Ingestion and report settings as dataclasses with defaults. Values can be
overridden from environment variables (entry points call load_dotenv()
first so a local .env file is honoured).
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

from .models import DocumentType

logger = logging.getLogger(__name__)

DEFAULT_MIN_CHUNK_LENGTH = 50
STATUTE_MIN_CHUNK_LENGTH = 10

# NVIDIA NIM OpenAI-compatible endpoint
DEFAULT_LLM_BASE_URL = "https://integrate.api.nvidia.com/v1"
DEFAULT_LLM_MODEL = "qwen/qwen3-235b-a22b"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _default_min_lengths() -> dict:
    return {DocumentType.STATUTE: STATUTE_MIN_CHUNK_LENGTH}


@dataclass
class ProcessingConfig:
    """Settings for split -> filter -> embed -> store."""
    # Generic fixed-window splitter
    chunk_size: int = 800
    chunk_overlap: int = 80
    boundary_window: int = 100

    # Statute splitter (characters; ~3 chars per token for Chinese)
    statute_max_chars: int = 1536
    statute_overlap_chars: int = 50

    # Contract clause splitter
    contract_max_segment_chars: int = 2000

    # Quality filter
    default_min_length: int = DEFAULT_MIN_CHUNK_LENGTH
    min_lengths: dict = field(default_factory=_default_min_lengths)
    enable_quality_filter: bool = False

    # Concurrency
    embed_workers: int = 4
    batch_workers: int = 4

    @classmethod
    def from_env(cls) -> "ProcessingConfig":
        """Build a config from CONTRACT_RAG_* environment variables."""
        min_lengths = _default_min_lengths()
        min_lengths[DocumentType.STATUTE] = _env_int(
            "CONTRACT_RAG_STATUTE_MIN_CHUNK_LENGTH", STATUTE_MIN_CHUNK_LENGTH
        )
        return cls(
            chunk_size=_env_int("CONTRACT_RAG_CHUNK_SIZE", 800),
            chunk_overlap=_env_int("CONTRACT_RAG_CHUNK_OVERLAP", 80),
            default_min_length=_env_int(
                "CONTRACT_RAG_MIN_CHUNK_LENGTH", DEFAULT_MIN_CHUNK_LENGTH
            ),
            min_lengths=min_lengths,
            enable_quality_filter=_env_bool("CONTRACT_RAG_QUALITY_FILTER", False),
            embed_workers=_env_int("CONTRACT_RAG_EMBED_WORKERS", 4),
        )


@dataclass
class ReportConfig:
    """Settings for structured report generation."""
    llm_model: str = DEFAULT_LLM_MODEL
    llm_base_url: str = DEFAULT_LLM_BASE_URL
    llm_api_key: Optional[str] = None
    max_tokens: int = 3000
    temperature: float = 0.2
    request_timeout: float = 60.0

    # Per-section bound enforced by the composer
    section_timeout: float = 90.0

    max_content_chars: int = 8000
    clean_content: bool = True

    @classmethod
    def from_env(cls) -> "ReportConfig":
        """Build a config from environment variables."""
        return cls(
            llm_model=os.getenv("CONTRACT_RAG_LLM_MODEL", DEFAULT_LLM_MODEL),
            llm_base_url=os.getenv("CONTRACT_RAG_LLM_BASE_URL", DEFAULT_LLM_BASE_URL),
            llm_api_key=os.getenv("NVIDIA_API_KEY"),
            section_timeout=_env_float("CONTRACT_RAG_SECTION_TIMEOUT", 90.0),
            max_content_chars=_env_int("CONTRACT_RAG_MAX_CONTENT_CHARS", 8000),
            clean_content=_env_bool("CONTRACT_RAG_CLEAN_CONTENT", True),
        )
