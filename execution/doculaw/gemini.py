"""
Gemini generation client and response parsing.

All document-generation features (complaint extraction, discovery, demand
letters) prompt Gemini for JSON and then parse a response that may be wrapped
in markdown fences or surrounded by prose. The helpers here do that parsing
once, with the same fallbacks everywhere:
    plain JSON -> fence-stripped JSON -> first {...} / [...] span
"""

import os
import re
import json
import logging
from typing import Optional

from google import genai
from google.genai import types

from .model_config import ModelConfig

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)

_FENCE_START = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")
_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")


class GenerationError(Exception):
    """Raised when an AI generation call fails or returns unusable output."""


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json (or ```) fence and a trailing ``` fence."""
    text = _FENCE_START.sub("", text or "", count=1)
    return _FENCE_END.sub("", text, count=1).strip()


def _parse_with_fallbacks(text: str, span: re.Pattern, expected: type):
    candidates = [text or "", strip_code_fences(text or "")]
    match = span.search(text or "")
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, expected):
            return value
    raise ValueError(f"No JSON {expected.__name__} found in response")


def parse_json_object(text: str) -> dict:
    """Parse a JSON object out of a model response."""
    return _parse_with_fallbacks(text, _OBJECT_SPAN, dict)


def parse_json_array(text: str) -> list:
    """Parse a JSON array out of a model response."""
    return _parse_with_fallbacks(text, _ARRAY_SPAN, list)


class GeminiClient:
    """
    Thin wrapper around google-genai with the app's safety settings.

    Usage:
        gemini = GeminiClient()
        text = gemini.generate("Return ONLY a JSON object ...")
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model = model or ModelConfig.from_env().gemini_model
        self._client = client

        if not self.api_key and client is None:
            logger.warning("GEMINI_API_KEY not found. Document generation is disabled.")

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise GenerationError("Gemini API key is not configured.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            safety_settings=[
                types.SafetySetting(
                    category=category,
                    threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
                )
                for category in SAFETY_CATEGORIES
            ],
        )

    def _generate(self, contents) -> str:
        client = self._get_client()
        try:
            response = client.models.generate_content(
                model=self.model,
                contents=contents,
                config=self._config(),
            )
        except Exception as e:
            logger.error(f"Gemini generation failed ({self.model}): {type(e).__name__}: {e}")
            raise GenerationError(f"Gemini request failed: {e}") from e

        text = (response.text or "").strip()
        if not text:
            raise GenerationError("AI returned an empty response.")
        return text

    def generate(self, prompt: str) -> str:
        """Generate text for a prompt. Raises GenerationError on empty output."""
        return self._generate(prompt)

    def generate_with_file(self, prompt: str, data: bytes, mime_type: str) -> str:
        """Generate text for a prompt plus an inline document (PDF, image)."""
        part = types.Part.from_bytes(data=data, mime_type=mime_type)
        return self._generate([prompt, part])
