"""
Case Retriever

Indexes a case's documents into the vector store and searches them.

Pipeline for indexing:
    document text -> TextChunker -> embeddings -> VectorRecord per chunk -> upsert

Search is scoped to one case via a `caseId` metadata filter; deletion finds a
document's vectors with a metadata-only query and deletes them by id.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass

from .chunker import TextChunker
from .vector_store import PineconeVectorStore, VectorRecord, SearchResult, VectorStoreError

logger = logging.getLogger(__name__)

# Pinecone's upper bound for topK; used to collect every vector of a document
MAX_TOP_K = 10000


@dataclass
class CaseDocument:
    """A document to index: its id, display name, text and type tag."""
    id: str
    name: str
    content: str
    type: str = "document"


class CaseRetriever:
    """
    Indexes and searches case documents.

    Usage:
        retriever = CaseRetriever(store, embeddings)
        retriever.add_documents([CaseDocument(...)], case_id, user_id)
        results = retriever.search("when was the defendant notified?", case_id)
    """

    def __init__(
        self,
        store: PineconeVectorStore,
        embeddings,
        chunker: Optional[TextChunker] = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.chunker = chunker or TextChunker()

    @property
    def is_configured(self) -> bool:
        return self.store.is_configured

    def add_documents(self, documents: list[CaseDocument], case_id: str, user_id: str) -> int:
        """
        Chunk, embed and upsert documents for a case.

        Returns:
            Number of vectors written
        """
        records = []
        try:
            for doc in documents:
                chunks = self.chunker.chunk_document(doc.id, doc.content)
                if not chunks:
                    logger.warning(f"Document {doc.id} ({doc.name}) has no text to index")
                    continue

                vectors = self.embeddings.embed_documents([c.content for c in chunks])
                created_at = datetime.now(timezone.utc).isoformat()

                for chunk, values in zip(chunks, vectors):
                    records.append(VectorRecord(
                        id=chunk.chunk_id,
                        values=values,
                        metadata={
                            "caseId": case_id,
                            "documentId": doc.id,
                            "documentName": doc.name,
                            "chunkIndex": chunk.chunk_index,
                            "userId": user_id,
                            "type": doc.type,
                            "createdAt": created_at,
                            "content": chunk.content,
                        },
                    ))

            self.store.upsert(records)
        except Exception as e:
            logger.error(f"Error adding documents to vector store: {e}")
            raise VectorStoreError("Failed to add documents to vector store") from e

        logger.info(f"Added {len(records)} vectors to vector store for case {case_id}")
        return len(records)

    def search(self, query: str, case_id: str, top_k: int = 5) -> list[SearchResult]:
        """Semantic search over one case's documents."""
        try:
            vector = self.embeddings.embed_query(query)
            return self.store.query(vector, filter={"caseId": {"$eq": case_id}}, top_k=top_k)
        except Exception as e:
            logger.error(f"Error searching vector store: {e}")
            raise VectorStoreError("Failed to search vector store") from e

    def delete_document(self, document_id: str) -> int:
        """
        Remove every vector belonging to a document.

        Returns:
            Number of vectors deleted
        """
        try:
            matches = self.store.query(
                [0.0] * self.embeddings.dimensions,
                filter={"documentId": {"$eq": document_id}},
                top_k=MAX_TOP_K,
            )
            ids = [m.id for m in matches]
            deleted = self.store.delete(ids)
        except Exception as e:
            logger.error(f"Error deleting document vectors: {e}")
            raise VectorStoreError("Failed to delete document vectors") from e

        if deleted:
            logger.info(f"Deleted {deleted} vectors for document {document_id}")
        return deleted

    def context_excerpts(self, query: str, case_id: str, top_k: int = 5) -> list[str]:
        """
        Best-effort excerpts for prompt context.

        Returns an empty list when the index is not configured or the search
        fails, so generation can proceed without case context.
        """
        if not self.is_configured:
            return []
        try:
            results = self.search(query, case_id, top_k=top_k)
        except VectorStoreError as e:
            logger.warning(f"Context retrieval skipped for case {case_id}: {e}")
            return []
        return [f"Document: {r.document_name}\nContent: {r.content}" for r in results if r.content]
