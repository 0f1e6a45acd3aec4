"""
Model Configuration for DocuLaw

Names the models each AI concern uses. Defaults match what the practice
app was tuned against; each can be overridden from the environment.
"""

import os
from dataclasses import dataclass


@dataclass
class ModelConfig:
    """Model names for generation, chat and embeddings."""
    gemini_model: str = "gemini-2.0-flash"
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    chat_max_tokens: int = 1000
    chat_temperature: float = 0.3

    @classmethod
    def from_env(cls) -> "ModelConfig":
        """
        Build a config from environment variables, falling back to defaults.

        Reads GEMINI_MODEL, OPENAI_CHAT_MODEL and OPENAI_EMBEDDING_MODEL.
        """
        defaults = cls()
        return cls(
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            chat_model=os.getenv("OPENAI_CHAT_MODEL", defaults.chat_model),
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", defaults.embedding_model),
        )
