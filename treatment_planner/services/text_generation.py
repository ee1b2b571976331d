# treatment_planner/services/text_generation.py
from __future__ import annotations

import logging
from typing import Protocol

import google.generativeai as genai

from ..errors import TextGenerationError

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def complete(self, prompt: str) -> str: ...


class GeminiTextGenerator:
    """Black-box text completion over Gemini. One call per prompt, bounded by a timeout, no retries."""

    def __init__(self, api_key: str, model_name: str, timeout_s: float = 30.0):
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.timeout_s = timeout_s
        self._model = genai.GenerativeModel(model_name)

    def complete(self, prompt: str) -> str:
        try:
            response = self._model.generate_content(
                prompt,
                generation_config={"response_mime_type": "application/json"},
                request_options={"timeout": self.timeout_s},
            )
            text = response.text
        except Exception as e:
            # SDK raises a mix of google.api_core and ValueError (blocked/empty candidates)
            logger.warning("Gemini %s call failed: %s", self.model_name, e)
            raise TextGenerationError(f"text generation failed: {e}") from e
        if not text or not text.strip():
            raise TextGenerationError("text generation returned no text")
        return text
