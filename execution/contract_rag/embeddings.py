"""
Embedding Providers for Contract RAG

Each provider exposes ``embed(text) -> vector``. A failed call raises
EmbeddingProviderError for that text only, so the caller can skip a single
chunk without abandoning the document.

Architecture:
    BaseEmbeddingService  -- shared caching and embed()
        VoyageEmbeddingService    -- Voyage AI voyage-multilingual-2 (default)
        EmbeddingService          -- Cohere embed-multilingual-v3.0
    LocalEmbeddingService -- local sentence-transformers BGE-M3
"""

import os
import json
import hashlib
import logging
from typing import Optional, Union
from dataclasses import dataclass
from pathlib import Path

from .exceptions import EmbeddingProviderError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "voyage"  # "voyage" or "cohere"
    model: str = "voyage-multilingual-2"
    dimensions: int = 1024
    cache_dir: Optional[str] = None
    use_cache: bool = True


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Subclasses implement _init_client() and set:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable holding the API key
    - _input_type: provider input type string for stored chunks
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _input_type: str = "document"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        self._client = None
        self._memory_cache: dict[str, list[float]] = {}
        self._cache_dir = Path(self.config.cache_dir) if self.config.cache_dir else None
        if self._cache_dir:
            self._cache_dir.mkdir(parents=True, exist_ok=True)

        self._init_client()

    def _init_client(self):
        raise NotImplementedError("Subclasses must implement _init_client()")

    def embed(self, text: str) -> list[float]:
        """
        Embed a single chunk of document text.

        Raises:
            EmbeddingProviderError: If the provider call fails or returns nothing
        """
        if not self._client:
            raise EmbeddingProviderError(
                f"{self._provider_name} client not initialized. Check {self._env_var_name}.",
                provider=self._provider_name,
            )

        key = self._cache_key(text)
        cached = self._load_cached(key)
        if cached is not None:
            return cached

        vector = self._request_vector(text)
        if not vector:
            raise EmbeddingProviderError(
                f"{self._provider_name} returned an empty embedding",
                provider=self._provider_name,
            )
        self._store_cached(key, vector)
        return vector

    def _request_vector(self, text: str) -> list[float]:
        try:
            response = self._client.embed(
                texts=[text],
                model=self.config.model,
                input_type=self._input_type,
            )
        except Exception as e:
            logger.error(f"{self._provider_name} embedding failed: {e}")
            raise EmbeddingProviderError(
                f"{self._provider_name} embedding failed: {e}",
                provider=self._provider_name,
            ) from e
        return list(response.embeddings[0]) if response.embeddings else []

    # -------------------------------------------------------------------------
    # Cache: memory first, then one JSON file per key when cache_dir is set
    # -------------------------------------------------------------------------

    def _cache_key(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.config.model}|{self._input_type}|{text}".encode("utf-8"))
        return digest.hexdigest()[:32]

    def _cache_file(self, key: str) -> Optional[Path]:
        return self._cache_dir / f"{key}.json" if self._cache_dir else None

    def _load_cached(self, key: str) -> Optional[list[float]]:
        if not self.config.use_cache:
            return None
        if key in self._memory_cache:
            return self._memory_cache[key]

        path = self._cache_file(key)
        if path is None or not path.exists():
            return None
        try:
            vector = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable embedding cache entry {path.name}: {e}")
            return None
        self._memory_cache[key] = vector
        return vector

    def _store_cached(self, key: str, vector: list[float]) -> None:
        if not self.config.use_cache:
            return
        self._memory_cache[key] = vector

        path = self._cache_file(key)
        if path is not None:
            try:
                path.write_text(json.dumps(vector))
            except OSError as e:
                logger.warning(f"Could not write embedding cache entry {path.name}: {e}")

    @property
    def dimensions(self) -> int:
        return self.config.dimensions


class VoyageEmbeddingService(BaseEmbeddingService):
    """Voyage AI embeddings; voyage-multilingual-2 handles Chinese legal text well."""

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _input_type = "document"

    def _init_client(self):
        api_key = os.getenv(self._env_var_name)
        if not api_key:
            logger.warning(f"{self._env_var_name} not set; every chunk will be skipped at embed time")
            return

        import voyageai
        self._client = voyageai.Client(api_key=api_key)
        logger.info(f"Voyage AI client ready ({self.config.model})")


class EmbeddingService(BaseEmbeddingService):
    """Cohere embed-v3 embeddings."""

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _input_type = "search_document"

    def _init_client(self):
        api_key = os.getenv(self._env_var_name)
        if not api_key:
            logger.warning(f"{self._env_var_name} not set; every chunk will be skipped at embed time")
            return

        import cohere
        self._client = cohere.Client(api_key)
        logger.info(f"Cohere client ready ({self.config.model})")


class LocalEmbeddingService:
    """
    Embeddings from a local sentence-transformers model.

    No API key or network needed once the model is downloaded.
    """

    _provider_name = "sentence-transformers"

    def __init__(self, model_name: str = "BAAI/bge-m3"):
        from sentence_transformers import SentenceTransformer
        self._model = SentenceTransformer(model_name)
        self._dimensions = self._model.get_sentence_embedding_dimension()
        logger.info(f"Local embedding model loaded: {model_name}")

    def embed(self, text: str) -> list[float]:
        try:
            return self._model.encode([text])[0].tolist()
        except Exception as e:
            raise EmbeddingProviderError(
                f"Local embedding failed: {e}", provider=self._provider_name
            ) from e

    @property
    def dimensions(self) -> int:
        return self._dimensions


PROVIDER_MODELS = {
    "voyage": (VoyageEmbeddingService, "voyage-multilingual-2"),
    "cohere": (EmbeddingService, "embed-multilingual-v3.0"),
}


def get_embedding_service(
    provider: str = "voyage",
    use_local: bool = False,
    cache_dir: Optional[str] = None,
) -> Union[VoyageEmbeddingService, EmbeddingService, LocalEmbeddingService]:
    """
    Build the embedding service for ``provider`` ("voyage" or "cohere").

    Unknown providers fall back to Voyage. ``use_local`` selects the local
    BGE-M3 model and ignores the other arguments.
    """
    if use_local:
        return LocalEmbeddingService()

    service_cls, model = PROVIDER_MODELS.get(provider, PROVIDER_MODELS["voyage"])
    return service_cls(EmbeddingConfig(
        provider=provider if provider in PROVIDER_MODELS else "voyage",
        model=model,
        cache_dir=cache_dir,
    ))
