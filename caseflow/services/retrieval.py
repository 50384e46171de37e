# =============================================================================
# Retrieval Engine — ChromaDB Vector Index + JSON Metadata Sidecar
# =============================================================================
#
# Indexes reference documents (case law, statutes, regulations, ...) as
# vectors and answers similarity queries for the research agent (RAG).
#
# PERSISTED LAYOUT (under settings.vector_db_path):
#   index/           — chromadb PersistentClient, collection
#                      "reference_documents", hnsw:space = cosine
#   documents.json   — ordered array of IndexedDocument records
#                      (index, external_id, title, content, source,
#                       metadata, added_at)
#
# The chromadb collection stores only vectors, keyed by the document's
# internal index (as a string). Everything else lives in the sidecar, so the
# index can be rebuilt from the sidecar plus an embedder if ever needed.
#
# DESIGN DECISION: One flush per document.
# add_document() writes the vector and rewrites the sidecar before
# returning. Durability is favoured over throughput: bulk ingestion pays
# one sidecar rewrite per document. The sidecar is written to a temp file
# and renamed into place, so a crash never leaves a half-written file.
# The sidecar bytes are serialised before the vector is added, and a failed
# sidecar write deletes the vector again. Internal indices are never
# reused, even after a failed add.
#
# DESIGN DECISION: Post-filtering.
# The k-NN search runs first (k = min(max_results, indexed count)); the
# similarity threshold and the document-type / jurisdiction / date-range /
# minimum-score filters run on those k candidates. A selective filter can
# therefore under-return. k is never expanded automatically.
#
# CONCURRENCY: An asyncio.Lock serialises ingestion within one engine
# instance. Separate engine instances (or processes) sharing a directory
# still race and need an external single-writer discipline.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings as ChromaSettings
from pydantic import TypeAdapter
from pydantic_core import PydanticSerializationError

from caseflow.config import settings
from caseflow.errors import ValidationError
from caseflow.models.retrieval import (
    IndexedDocument,
    IndexStats,
    RAGFilters,
    RAGQuery,
    RAGResult,
    ReferenceDocument,
    RetrievedDocument,
)
from caseflow.services.embedder import Embedder

logger = logging.getLogger(__name__)

COLLECTION_NAME = "reference_documents"
DOCUMENTS_FILE = "documents.json"
INDEX_DIR = "index"

# Directory ingestion
INGEST_SUFFIXES = frozenset({".txt", ".md", ".json"})
MAX_INGEST_CHARS = 8000

_sidecar_adapter = TypeAdapter(list[IndexedDocument])


def infer_document_type(filename: str) -> str:
    """Guess a reference document's type from its file name."""
    lowered = filename.lower()
    if "case" in lowered or "court" in lowered:
        return "case-law"
    if "statute" in lowered or "law" in lowered:
        return "statute"
    if "regulation" in lowered or "rule" in lowered:
        return "regulation"
    if "contract" in lowered:
        return "contract"
    return "legal-document"


class RetrievalEngine:
    """
    Vector index over reference documents with post-hoc metadata filtering.

    The embedder is fixed at construction; vectors produced by different
    embedders are never mixed in one index (the dimension check catches
    the common case).

    Usage:
        engine = RetrievalEngine(get_embedder())
        await engine.initialize()
        await engine.add_document(ReferenceDocument(...))
        result = await engine.query(RAGQuery(query="wrongful termination"))
    """

    def __init__(self, embedder: Embedder, storage_dir: str | Path | None = None) -> None:
        self._embedder = embedder
        self._dir = Path(storage_dir or settings.vector_db_path)
        self._client: Any = None
        self._collection: Any = None
        self._documents: dict[int, IndexedDocument] = {}
        self._dimensions: int | None = None
        self._next_index = 0
        self._ingest_lock = asyncio.Lock()
        self.is_initialized = False

    @property
    def storage_dir(self) -> Path:
        return self._dir

    @property
    def documents_file(self) -> Path:
        return self._dir / DOCUMENTS_FILE

    # ---------------------------------------------------------------------
    # Initialisation
    # ---------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Open (or create) the index and load the metadata sidecar.

        Idempotent. chromadb grows its HNSW index on demand, so there is no
        initial capacity to configure.
        """
        if self.is_initialized:
            return
        await asyncio.to_thread(self._initialize_sync)

    def _initialize_sync(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self._documents = self._load_sidecar()

        self._client = chromadb.PersistentClient(
            path=str(self._dir / INDEX_DIR),
            settings=ChromaSettings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )
        self._dimensions = self._read_dimensions()
        self._next_index = self._read_next_index()

        indexed_count = self._collection.count()
        if indexed_count != len(self._documents):
            logger.warning(
                "Index holds %d vectors but sidecar lists %d documents",
                indexed_count, len(self._documents),
            )

        self.is_initialized = True
        logger.info(
            "Retrieval engine initialized (path=%s, documents=%d, dimensions=%s)",
            self._dir, len(self._documents), self._dimensions,
        )

    def _load_sidecar(self) -> dict[int, IndexedDocument]:
        if not self.documents_file.exists():
            logger.info("No existing documents found, starting with empty collection")
            return {}
        records = _sidecar_adapter.validate_json(self.documents_file.read_bytes())
        return {record.index: record for record in records}

    def _read_dimensions(self) -> int | None:
        if self._collection.count() == 0:
            return None
        sample = self._collection.get(limit=1, include=["embeddings"])
        embeddings = sample.get("embeddings")
        # chromadb may hand back a numpy array here; avoid truthiness tests
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    def _read_next_index(self) -> int:
        # Vectors can outlive their sidecar record after a crash
        indexed_ids = self._collection.get(include=[])["ids"]
        highest = max(
            [*self._documents, *(int(chroma_id) for chroma_id in indexed_ids)],
            default=-1,
        )
        return highest + 1

    # ---------------------------------------------------------------------
    # Ingestion
    # ---------------------------------------------------------------------

    async def add_document(self, document: ReferenceDocument) -> IndexedDocument:
        """
        Embed, index and persist one reference document.

        Raises:
            ValidationError: The embedding's dimensionality differs from the
                vectors already in the index, or the metadata cannot be
                serialised to the sidecar.
            ExternalServiceError: The embedder failed.
        """
        await self.initialize()

        async with self._ingest_lock:
            vector = await self._embedder.embed(document.content)
            self._check_dimensions(vector)

            index = self._next_index
            self._next_index += 1
            indexed = IndexedDocument(
                index=index,
                external_id=document.id,
                title=document.title,
                content=document.content,
                source=document.source,
                metadata=document.metadata,
                vector=vector,
            )
            await asyncio.to_thread(self._persist, indexed)

            self._documents[indexed.index] = indexed
            if self._dimensions is None:
                self._dimensions = len(vector)

        logger.info(
            "Document added to index (id=%s, title=%s, index=%d)",
            document.id, document.title, indexed.index,
        )
        return indexed

    def _persist(self, indexed: IndexedDocument) -> None:
        records = [*self._documents.values(), indexed]
        try:
            payload = _sidecar_adapter.dump_json(records, indent=2)
        except PydanticSerializationError as e:
            raise ValidationError(
                f"Metadata of document {indexed.external_id} is not serialisable: {e}"
            ) from e

        chroma_id = str(indexed.index)
        self._collection.add(ids=[chroma_id], embeddings=[indexed.vector])

        tmp_path = self.documents_file.with_suffix(".json.tmp")
        try:
            tmp_path.write_bytes(payload)
            os.replace(tmp_path, self.documents_file)
        except OSError:
            logger.error(
                "Sidecar write failed, removing vector %s from the index", chroma_id,
            )
            self._collection.delete(ids=[chroma_id])
            raise

    async def add_documents_from_directory(self, directory: str | Path) -> int:
        """
        Recursively ingest .txt / .md / .json files under `directory`.

        Content is capped at 8000 characters and the document type is
        inferred from the file name. Unreadable or empty files are logged
        and skipped; embedding and index errors propagate.

        Returns:
            Number of documents added.
        """
        root = Path(directory)
        if not root.is_dir():
            raise ValidationError(f"Not a directory: {root}")

        files = sorted(
            path for path in root.rglob("*")
            if path.is_file() and path.suffix.lower() in INGEST_SUFFIXES
        )
        logger.info("Processing %d documents from %s", len(files), root)

        added = 0
        for path in files:
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read %s, skipping: %s", path, e)
                continue
            if not content.strip():
                logger.warning("Skipping empty file %s", path)
                continue

            relative = path.relative_to(root).as_posix()
            await self.add_document(ReferenceDocument(
                id=relative,
                title=path.stem,
                content=content[:MAX_INGEST_CHARS],
                source=str(path),
                metadata={
                    "type": infer_document_type(relative),
                    "file_size": len(content),
                },
            ))
            added += 1

        logger.info("Added %d documents from %s", added, root)
        return added

    def _check_dimensions(self, vector: list[float]) -> None:
        if self._dimensions is not None and len(vector) != self._dimensions:
            raise ValidationError(
                f"Vector has {len(vector)} dimensions, index expects "
                f"{self._dimensions}"
            )

    # ---------------------------------------------------------------------
    # Query
    # ---------------------------------------------------------------------

    async def query(self, request: RAGQuery) -> RAGResult:
        """
        Nearest-neighbour search followed by threshold and metadata filters.

        Score = 1 − cosine distance. Results are ordered by score
        (highest first) and never exceed `request.max_results`.
        """
        await self.initialize()
        started = time.perf_counter()

        count = await asyncio.to_thread(self._collection.count)
        if count == 0:
            return RAGResult(query_time_ms=(time.perf_counter() - started) * 1000)

        vector = await self._embedder.embed(request.query)
        self._check_dimensions(vector)

        k = min(request.max_results, count)
        raw = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[vector],
            n_results=k,
            include=["distances"],
        )

        documents: list[RetrievedDocument] = []
        for chroma_id, distance in zip(raw["ids"][0], raw["distances"][0], strict=True):
            record = self._documents.get(int(chroma_id))
            if record is None:
                logger.warning("Index entry %s has no sidecar record", chroma_id)
                continue

            score = 1.0 - float(distance)
            if score < request.threshold:
                continue
            if not _matches_filters(record, score, request.filters):
                continue

            documents.append(RetrievedDocument(
                id=record.external_id,
                title=record.title,
                content=record.content,
                source=record.source,
                relevance_score=score,
                metadata=record.metadata,
            ))

        elapsed_ms = (time.perf_counter() - started) * 1000
        confidence = (
            sum(doc.relevance_score for doc in documents) / len(documents)
            if documents else 0.0
        )

        logger.info(
            "Retrieval query completed (k=%d, results=%d, confidence=%.3f, %.0fms)",
            k, len(documents), confidence, elapsed_ms,
        )
        return RAGResult(
            documents=documents,
            total_results=len(documents),
            query_time_ms=elapsed_ms,
            confidence=confidence,
        )

    # ---------------------------------------------------------------------
    # Health & Stats
    # ---------------------------------------------------------------------

    async def health_check(self) -> bool:
        if not self.is_initialized or self._collection is None:
            return False
        try:
            await asyncio.to_thread(self._collection.count)
        except Exception:
            logger.exception("Retrieval index health check failed")
            return False
        return True

    async def get_stats(self) -> IndexStats:
        index_size = 0
        if self._collection is not None:
            index_size = await asyncio.to_thread(self._collection.count)
        return IndexStats(
            documents_count=len(self._documents),
            index_size=index_size,
            is_initialized=self.is_initialized,
            dimensions=self._dimensions,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _document_date(metadata: dict[str, Any]) -> datetime | None:
    raw = metadata.get("date")
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if isinstance(raw, str):
        try:
            return _as_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def _matches_filters(
    record: IndexedDocument, score: float, filters: RAGFilters | None,
) -> bool:
    if filters is None:
        return True

    metadata = record.metadata
    if filters.document_type and metadata.get("type") not in filters.document_type:
        return False
    if filters.jurisdiction and metadata.get("jurisdiction") not in filters.jurisdiction:
        return False

    date_range = filters.date_range
    if date_range is not None and (date_range.start or date_range.end):
        doc_date = _document_date(metadata)
        if doc_date is None:
            return False
        if date_range.start and doc_date < _as_utc(date_range.start):
            return False
        if date_range.end and doc_date > _as_utc(date_range.end):
            return False

    if filters.relevance_score is not None and score < filters.relevance_score:
        return False
    return True
