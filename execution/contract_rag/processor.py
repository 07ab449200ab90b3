"""
Document Ingestion Pipeline

split -> quality filter -> embed -> store, one document at a time.

- Embedding calls for one document run concurrently; a failed call skips
  that chunk only.
- Operations on the same document id are serialized through a keyed lock,
  so a reprocess can never interleave with another ingest of that id.
  Different ids never contend.
- Vector store failures propagate to the caller.
"""

import time
import logging
import threading
from contextlib import contextmanager
from typing import Optional

from .config import ProcessingConfig
from .exceptions import DocumentNotFoundError
from .models import (
    BatchProcessingResult,
    Chunk,
    Document,
    EmbeddingRecord,
    ProcessingResult,
)
from .quality_filter import QualityFilter
from .splitter import SplitterFactory

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    A map of exclusive locks indexed by key.

    Locks are created on first use and discarded once no thread holds or
    waits on them, so the map only grows with concurrently active keys.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[str, list] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


class DocumentProcessor:
    """
    Orchestrates ingestion of documents into the vector store.

    Usage:
        processor = DocumentProcessor(get_embedding_service(), store)
        stored = processor.process(document)
        processor.reprocess(document.id)
        processor.rebuild_all()
    """

    def __init__(
        self,
        embedding_service,
        vector_store,
        config: Optional[ProcessingConfig] = None,
        splitter_factory: Optional[SplitterFactory] = None,
        quality_filter: Optional[QualityFilter] = None,
    ):
        self.config = config or ProcessingConfig()
        self.embeddings = embedding_service
        self.store = vector_store
        self.splitters = splitter_factory or SplitterFactory(self.config)
        self.quality_filter = quality_filter or QualityFilter.from_config(self.config)
        self._locks = KeyedLock()

    # =========================================================================
    # Public operations
    # =========================================================================

    def process(self, document: Document) -> int:
        """
        Ingest a document, replacing any chunks stored under its id.

        Returns:
            Number of chunks stored. Zero is a valid outcome.

        Raises:
            ValueError: If the document has no id or filename
            VectorStoreError: If the store rejects a write
        """
        self._check_document(document)

        with self._locks.hold(document.id):
            self.store.register_document(document)
            records = self._build_records(document)
            # Indices not written this time must not stay visible
            stored = self.store.replace_document_chunks(document.id, records)

        logger.info(f"Processed document {document.id} ({document.filename}): {stored} chunks stored")
        return stored

    def reprocess(self, document_id: str) -> int:
        """
        Rebuild the stored chunk set of a registered document.

        The old set is replaced by the new one in a single store transaction.

        Raises:
            DocumentNotFoundError: If the id was never processed
            VectorStoreError: If the store rejects the replace
        """
        with self._locks.hold(document_id):
            document = self.store.get_document(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)

            records = self._build_records(document)
            stored = self.store.replace_document_chunks(document_id, records)

        logger.info(f"Reprocessed document {document_id}: {stored} chunks")
        return stored

    def rebuild_all(self) -> dict[str, int]:
        """
        Reprocess every registered document.

        Each document is replaced atomically; the rebuild as a whole is not a
        snapshot, so readers may see some documents rebuilt before others.

        Returns:
            Mapping of document id to stored chunk count
        """
        document_ids = self.store.list_document_ids()
        logger.info(f"Rebuilding {len(document_ids)} documents")

        results = {}
        for document_id in document_ids:
            results[document_id] = self.reprocess(document_id)

        logger.info(f"Rebuild complete: {sum(results.values())} chunks across {len(results)} documents")
        return results

    def process_batch(self, documents: list[Document]) -> BatchProcessingResult:
        """Process distinct documents in parallel and summarise the outcome."""
        from concurrent.futures import ThreadPoolExecutor

        start = time.perf_counter()
        if not documents:
            return BatchProcessingResult(total=0, succeeded=0, failed=0, total_chunks=0, duration_ms=0)

        workers = max(1, min(self.config.batch_workers, len(documents)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(self._process_with_result, documents))

        succeeded = sum(1 for r in results if r.success)
        batch = BatchProcessingResult(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            total_chunks=sum(r.chunk_count for r in results),
            duration_ms=int((time.perf_counter() - start) * 1000),
            results=results,
        )
        logger.info(
            f"Batch processed {batch.total} documents: "
            f"{batch.succeeded} succeeded, {batch.failed} failed, {batch.total_chunks} chunks"
        )
        return batch

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _check_document(document: Document) -> None:
        if not document.id:
            raise ValueError("Document id is required")
        if not document.filename or not document.filename.strip():
            raise ValueError(f"Document {document.id} has no filename")

    def _process_with_result(self, document: Document) -> ProcessingResult:
        start = time.perf_counter()
        splitter_name = self.splitters.get_splitter(document.doc_type).name
        try:
            count = self.process(document)
        except Exception as e:
            logger.error(f"Processing failed for document {document.id}: {type(e).__name__}: {e}")
            return ProcessingResult(
                document_id=document.id,
                success=False,
                message=str(e),
                splitter_type=splitter_name,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        return ProcessingResult(
            document_id=document.id,
            success=True,
            message="处理成功",
            chunk_count=count,
            splitter_type=splitter_name,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    def _select_chunks(self, document: Document) -> list[Chunk]:
        """Split and filter, re-indexing survivors so indices are contiguous."""
        chunks = self.splitters.split_document(document)
        kept = [c for c in chunks if self.quality_filter.keep(c.text, document.doc_type)]

        dropped = len(chunks) - len(kept)
        if dropped:
            logger.debug(f"Quality filter dropped {dropped}/{len(chunks)} chunks from {document.id}")

        for index, chunk in enumerate(kept):
            chunk.index = index
        return kept

    def _build_records(self, document: Document) -> list[EmbeddingRecord]:
        """Split, filter and embed a document into complete, ordered records."""
        from concurrent.futures import ThreadPoolExecutor, as_completed

        chunks = self._select_chunks(document)
        if not chunks:
            logger.info(f"No chunks survived filtering for document {document.id}")
            return []

        records = []
        failed = 0
        workers = max(1, min(self.config.embed_workers, len(chunks)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.embeddings.embed, chunk.text): chunk for chunk in chunks}
            for future in as_completed(futures):
                chunk = futures[future]
                try:
                    vector = future.result()
                except Exception as e:
                    failed += 1
                    logger.warning(
                        f"Embedding failed for chunk {chunk.index} of {document.id}, skipping: {e}"
                    )
                    continue
                if not vector:
                    failed += 1
                    logger.warning(f"Empty embedding for chunk {chunk.index} of {document.id}, skipping")
                    continue
                records.append(EmbeddingRecord(
                    content=chunk.text,
                    vector=list(vector),
                    metadata=self._chunk_metadata(document, chunk, len(chunks)),
                ))

        if failed:
            logger.warning(f"{failed}/{len(chunks)} chunks of {document.id} were not embedded")

        records.sort(key=lambda r: r.chunk_index)
        return records

    def _chunk_metadata(self, document: Document, chunk: Chunk, total: int) -> dict:
        metadata = {
            key: value for key, value in chunk.metadata.items() if value is not None
        }
        metadata.update({
            "doc_id": document.id,
            "filename": document.filename,
            "doc_type": document.doc_type.name,
            "chunk_index": chunk.index,
            "total_chunks": total,
            "char_length": chunk.length,
        })
        if self.quality_filter.enable_scoring:
            metadata["quality_score"] = self.quality_filter.score(chunk.text, document.doc_type)
        return metadata


# CLI for testing
if __name__ == "__main__":
    import sys
    import uuid
    from pathlib import Path
    from dotenv import load_dotenv

    from .embeddings import get_embedding_service
    from .splitter import classify_document_type
    from .vector_store import VectorStore

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.contract_rag.processor <file> [<file> ...]")
        sys.exit(1)

    store = VectorStore()
    store.connect()
    store.initialize_schema()
    processor = DocumentProcessor(get_embedding_service(), store, ProcessingConfig.from_env())

    docs = []
    for arg in sys.argv[1:]:
        path = Path(arg)
        text = path.read_text(encoding="utf-8")
        docs.append(Document(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, str(path.resolve()))),
            text=text,
            doc_type=classify_document_type(path.name, text),
            filename=path.name,
        ))

    result = processor.process_batch(docs)
    for item in result.results:
        print(item.to_dict())
    store.close()
