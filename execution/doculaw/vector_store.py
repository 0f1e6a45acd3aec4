"""
Vector Store over the Pinecone REST API

Stores case-document chunk embeddings in a hosted Pinecone index and runs
similarity search against it. Talks to the index data plane directly over
HTTP so the only client dependency is `requests`.

Every vector carries camelCase metadata (caseId, documentId, documentName,
chunkIndex, userId, type, createdAt, content); the chunk text itself lives
in `content`, so search results need no second lookup.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass, field

import requests

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100


class VectorStoreError(Exception):
    """Raised when the vector index is unavailable or rejects a request."""


@dataclass
class PineconeConfig:
    """Configuration for the Pinecone index."""
    api_key: Optional[str] = None
    index_name: Optional[str] = None
    host: Optional[str] = None
    timeout: float = 30.0
    dimensions: int = 1536


@dataclass
class VectorRecord:
    """A chunk embedding ready for upsert."""
    id: str
    values: list[float]
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass
class SearchResult:
    """A single search match with score."""
    id: str
    score: float
    metadata: dict
    content: str

    @property
    def document_name(self) -> str:
        return str(self.metadata.get("documentName", ""))

    @property
    def document_id(self) -> str:
        return str(self.metadata.get("documentId", ""))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "score": self.score,
            "metadata": self.metadata,
            "content": self.content,
        }


def resolve_pinecone_host(api_key: Optional[str], index_name: str, host: Optional[str] = None) -> Optional[str]:
    """
    Work out the index data-plane URL.

    An explicit host wins. Otherwise the host is derived from the API key,
    read as `<project>-<environment>-...`:
        https://<index>-<project>.svc.<environment>.pinecone.io
    """
    if host:
        host = host.strip().rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return host

    if not api_key:
        return None

    parts = api_key.split("-")
    if len(parts) < 2:
        return None
    project_id, environment = parts[0], parts[1]
    return f"https://{index_name}-{project_id}.svc.{environment}.pinecone.io"


class PineconeVectorStore:
    """
    Pinecone index client.

    Features:
    - Batched upsert (100 vectors per request)
    - Metadata-filtered similarity query
    - Delete by vector id
    """

    def __init__(self, config: Optional[PineconeConfig] = None, session: Optional[requests.Session] = None):
        """
        Initialize vector store.

        Args:
            config: Optional configuration. Uses env vars for missing values.
            session: Optional HTTP session (tests inject a mock)
        """
        self.config = config or PineconeConfig()
        self.api_key = self.config.api_key or os.getenv("PINECONE_API_KEY")
        self.index_name = self.config.index_name or os.getenv("PINECONE_INDEX_NAME") or "doculaw"
        self.host = resolve_pinecone_host(
            self.api_key,
            self.index_name,
            self.config.host or os.getenv("PINECONE_HOST"),
        )
        self._session = session or requests.Session()

        if not self.api_key:
            logger.warning("PINECONE_API_KEY not found. Vector search is disabled.")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.api_key)

    def _post(self, path: str, payload: dict, op: str) -> dict:
        if not self.is_configured:
            raise VectorStoreError(
                "Pinecone not initialized - check PINECONE_API_KEY environment variable"
            )

        try:
            response = self._session.post(
                f"{self.host}{path}",
                json=payload,
                headers={
                    "Api-Key": self.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Pinecone {op} request failed: {e}")
            raise VectorStoreError(f"Pinecone {op} failed: {e}") from e

        if not response.ok:
            logger.error(f"Pinecone {op} failed: {response.status_code} {response.text[:500]}")
            raise VectorStoreError(
                f"Pinecone {op} failed: {response.status_code} {response.text}"
            )

        if not response.content:
            return {}
        return response.json()

    def upsert(self, records: list[VectorRecord]) -> int:
        """
        Upsert vectors in batches.

        Returns:
            Number of vectors sent
        """
        for i in range(0, len(records), UPSERT_BATCH_SIZE):
            batch = records[i:i + UPSERT_BATCH_SIZE]
            self._post("/vectors/upsert", {"vectors": [r.to_dict() for r in batch]}, "upsert")
            logger.debug(f"Upserted batch {i // UPSERT_BATCH_SIZE + 1} ({len(batch)} vectors)")
        return len(records)

    def query(self, vector: list[float], filter: Optional[dict] = None, top_k: int = 5) -> list[SearchResult]:
        """
        Similarity query with an optional metadata filter.

        Args:
            vector: Query embedding
            filter: Pinecone metadata filter, e.g. {"caseId": {"$eq": "..."}}
            top_k: Number of matches to return

        Returns:
            Matches ordered by score, highest first
        """
        payload = {"vector": vector, "topK": top_k, "includeMetadata": True}
        if filter:
            payload["filter"] = filter

        data = self._post("/query", payload, "query")

        results = []
        for match in data.get("matches", []):
            metadata = match.get("metadata") or {}
            results.append(SearchResult(
                id=match["id"],
                score=match.get("score") or 0,
                metadata=metadata,
                content=str(metadata.get("content") or ""),
            ))
        return results

    def delete(self, ids: list[str]) -> int:
        """Delete vectors by id. Returns the number of ids sent."""
        if not ids:
            return 0
        self._post("/vectors/delete", {"ids": ids}, "delete")
        return len(ids)

    def describe_index_stats(self) -> dict:
        """Index statistics (vector count, dimension); used by health checks."""
        return self._post("/describe_index_stats", {}, "describe_index_stats")
