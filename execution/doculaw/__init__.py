"""
DocuLaw - Legal Practice Backend

This module provides the server side of the DocuLaw practice app:
- Client and case management for lawyers, with a client portal
- Case document storage, text extraction and vector indexing
- Retrieval-augmented answers over a case's documents
- AI-generated discovery (RFA, RFP, special interrogatories) and demand letters
- SMS notifications and magic-link client login
"""

from .chunker import TextChunker
from .embeddings import OpenAIEmbeddingService
from .vector_store import PineconeVectorStore
from .retriever import CaseRetriever
from .discovery import DiscoveryService
from .demand_letter import DemandLetterService

__all__ = [
    "TextChunker",
    "OpenAIEmbeddingService",
    "PineconeVectorStore",
    "CaseRetriever",
    "DiscoveryService",
    "DemandLetterService",
]

__version__ = "0.1.0"
