"""
Case Assistant - retrieval-augmented answers over a case's documents.

Retrieves the top matching chunks for a question, formats them as context and
asks the chat model to answer from that context, citing source documents.
"""

import os
import json
import logging
from typing import Iterator, Optional
from dataclasses import dataclass, field

from .gemini import GenerationError
from .model_config import ModelConfig
from .retriever import CaseRetriever
from .vector_store import SearchResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful legal AI assistant. Provide accurate, helpful responses "
    "based on the context provided. Always cite the source documents when possible."
)

USER_PROMPT = """You are a legal AI assistant helping with a case. Use the following context from case documents to answer the user's question. If the context doesn't contain relevant information, say so.

Context from case documents:
{context}

User question: {query}

Please provide a helpful, accurate response based on the context provided. If you need more information, suggest what additional documents might be helpful."""

NO_RESPONSE = "Sorry, I could not generate a response."


@dataclass
class AssistantAnswer:
    answer: str
    sources: list[SearchResult] = field(default_factory=list)


def build_context(results: list[SearchResult]) -> str:
    return "\n\n".join(
        f"Document: {r.document_name}\nContent: {r.content}" for r in results
    )


def build_prompt(query: str, context: str) -> str:
    return USER_PROMPT.format(context=context, query=query)


def sse_event(event: str, data) -> str:
    """Format a Server-Sent Event."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class CaseAssistant:
    """Answers questions about a case from its indexed documents."""

    def __init__(
        self,
        retriever: CaseRetriever,
        llm_client=None,
        model_config: Optional[ModelConfig] = None,
    ):
        self.retriever = retriever
        self.models = model_config or ModelConfig.from_env()
        self._llm_client = llm_client

    def _get_llm_client(self):
        if self._llm_client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise GenerationError(
                    "OpenAI client not initialized - check OPENAI_API_KEY environment variable"
                )
            from openai import OpenAI
            self._llm_client = OpenAI(api_key=api_key, timeout=60.0)
        return self._llm_client

    def _messages(self, query: str, results: list[SearchResult]) -> list[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(query, build_context(results))},
        ]

    def answer(self, query: str, case_id: str, context_limit: int = 5) -> AssistantAnswer:
        """
        Answer a question using the case's documents as context.

        Args:
            query: The user's question
            case_id: Case whose documents are searched
            context_limit: Number of chunks to include as context

        Returns:
            AssistantAnswer with the text and the chunks used
        """
        results = self.retriever.search(query, case_id, top_k=context_limit)

        try:
            response = self._get_llm_client().chat.completions.create(
                model=self.models.chat_model,
                messages=self._messages(query, results),
                max_tokens=self.models.chat_max_tokens,
                temperature=self.models.chat_temperature,
            )
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Error getting AI response with context: {type(e).__name__}: {e}")
            raise GenerationError("Failed to get AI response") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        return AssistantAnswer(answer=content or NO_RESPONSE, sources=results)

    def stream_answer(self, query: str, case_id: str, context_limit: int = 5) -> Iterator[str]:
        """
        Streaming variant of answer(), yielding SSE events.

        Events:
          - sources: matched chunks (sent before generation starts)
          - token: answer text as it is generated
          - done: end of stream
          - error: retrieval or generation failed
        """
        try:
            results = self.retriever.search(query, case_id, top_k=context_limit)
        except Exception as e:
            logger.error(f"Stream: retrieval failed for case {case_id}: {e}")
            yield sse_event("error", "Failed to search vector store")
            return

        yield sse_event("sources", [r.to_dict() for r in results])

        produced = False
        try:
            stream = self._get_llm_client().chat.completions.create(
                model=self.models.chat_model,
                messages=self._messages(query, results),
                max_tokens=self.models.chat_max_tokens,
                temperature=self.models.chat_temperature,
                stream=True,
            )
            for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    produced = True
                    yield sse_event("token", chunk.choices[0].delta.content)
        except Exception as e:
            logger.error(f"Stream: LLM failed: {type(e).__name__}: {e}")
            yield sse_event("error", "Failed to get AI response")
            return

        if not produced:
            yield sse_event("token", NO_RESPONSE)
        yield sse_event("done", {"sources": len(results)})
