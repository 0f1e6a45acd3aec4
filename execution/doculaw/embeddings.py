"""
Embedding Service for DocuLaw

Provides embeddings via OpenAI (text-embedding-3-small, 1536 dimensions).
Supports batching and caching so re-indexing an unchanged document does not
pay for the same embeddings twice.

Architecture:
    BaseEmbeddingService      -- shared caching, batching, embed_documents, embed_query
        OpenAIEmbeddingService    -- OpenAI embeddings provider
"""

import os
import json
import hashlib
import logging
from typing import Optional
from dataclasses import dataclass
from pathlib import Path

from .model_config import ModelConfig

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100  # inputs per request
    max_tokens_per_batch: int = 250000  # OpenAI caps a request at 300K tokens
    chars_per_token: float = 4.0
    cache_dir: Optional[str] = None
    use_cache: bool = True


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Batched embedding with progress logging
    - Memory and file-based caching
    - Cache key generation

    Subclasses implement:
    - _init_client(): Initialize the provider-specific API client
    - _request_embeddings(texts): Call the provider and return vectors in order
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache = {}

        if self.config.cache_dir:
            self._cache_path = Path(self.config.cache_dir)
            self._cache_path.mkdir(parents=True, exist_ok=True)
        else:
            self._cache_path = None

        self._init_client()

    def _init_client(self):
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _request_embeddings(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError("Subclasses must implement _request_embeddings()")

    def _require_client(self) -> None:
        if not self._client:
            raise RuntimeError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for document chunks.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not texts:
            return []

        self._require_client()
        batches = self._create_batches(texts)

        logger.info(
            f"Embedding {len(texts)} chunks in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        embeddings = []
        for batch_idx, batch in enumerate(batches):
            embeddings.extend(self._embed_batch(batch, input_type="document"))

            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        return embeddings

    def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Args:
            query: Search query string

        Returns:
            Embedding vector
        """
        self._require_client()

        result = self._embed_batch([query], input_type="query")
        return result[0] if result else []

    def _embed_batch(self, texts: list[str], input_type: str = "document") -> list[list[float]]:
        """Embed a batch, serving what it can from cache."""
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        if uncached_texts:
            try:
                vectors = self._request_embeddings(uncached_texts)
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise

            for idx, embedding in zip(uncached_indices, vectors):
                self._set_cached(self._get_cache_key(texts[idx], input_type), embedding)
                results.append((idx, embedding))

        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results]

    def _get_cache_key(self, text: str, input_type: str) -> str:
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        if not self.config.use_cache:
            return None

        if key in self._cache:
            return self._cache[key]

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file) as f:
                        embedding = json.load(f)
                        self._cache[key] = embedding
                        return embedding
                except (OSError, ValueError) as e:
                    logger.debug(f"Failed to read embedding cache file {cache_file}: {e}")

        return None

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        if not self.config.use_cache:
            return

        self._cache[key] = embedding

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            try:
                with open(cache_file, "w") as f:
                    json.dump(embedding, f)
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using OpenAI's embeddings endpoint.

    text-embedding-3-small returns 1536-dimensional vectors, which is the
    dimension the case-document index was created with.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"

    def _init_client(self):
        api_key = os.getenv("OPENAI_API_KEY")

        if not api_key:
            logger.warning(
                "OPENAI_API_KEY not found. Embeddings will fail. "
                "Set the environment variable to enable vector search."
            )
            return

        from openai import OpenAI
        self._client = OpenAI(api_key=api_key)
        logger.info(f"OpenAI embedding client initialized with model {self.config.model}")

    def _request_embeddings(self, texts: list[str]) -> list[list[float]]:
        response = self._client.embeddings.create(
            model=self.config.model,
            input=texts,
        )
        return [item.embedding for item in response.data]


def get_embedding_service(
    provider: str = "openai",
    model_config: Optional[ModelConfig] = None,
    cache_dir: Optional[str] = None,
) -> OpenAIEmbeddingService:
    """
    Factory function to get the configured embedding service.

    Args:
        provider: Embedding provider name. Only "openai" is supported.
        model_config: Optional model names; defaults come from the environment.
        cache_dir: Optional directory for the on-disk embedding cache

    Returns:
        Configured embedding service
    """
    if provider != "openai":
        raise ValueError(f"Unsupported embedding provider: {provider}")

    models = model_config or ModelConfig.from_env()
    config = EmbeddingConfig(
        provider="openai",
        model=models.embedding_model,
        dimensions=models.embedding_dimensions,
        cache_dir=cache_dir,
    )
    return OpenAIEmbeddingService(config)


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    service = get_embedding_service()

    if len(sys.argv) > 1:
        query = " ".join(sys.argv[1:])
    else:
        query = "When did the defendant receive notice of the defect?"

    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
