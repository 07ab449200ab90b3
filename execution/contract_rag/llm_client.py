"""
Generative model client.

Thin wrapper around an OpenAI-compatible chat endpoint (NVIDIA NIM by
default) exposing ``generate(prompt) -> str``. Every failure, including
timeouts and empty completions, surfaces as GenerationError.
"""

import logging
from typing import Optional

from .config import ReportConfig
from .exceptions import GenerationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "你是一名专业、严谨的中国合同审查律师。只输出用户要求的JSON，"
    "不要输出解释、Markdown或其他任何文字。"
)


class NimLLMClient:
    """OpenAI client pointed at the NVIDIA NIM API."""

    def __init__(self, config: Optional[ReportConfig] = None):
        self.config = config or ReportConfig.from_env()
        self._client = None

    def _get_client(self):
        """Get or create the cached OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(
                base_url=self.config.llm_base_url,
                api_key=self.config.llm_api_key,
                timeout=self.config.request_timeout,
            )
        return self._client

    def generate(self, prompt: str) -> str:
        """
        Send a single-turn prompt and return the raw completion text.

        Raises:
            GenerationError: On timeout, API error, or empty response
        """
        from openai import APITimeoutError

        try:
            response = self._get_client().chat.completions.create(
                model=self.config.llm_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except APITimeoutError as e:
            logger.error(f"LLM generation timed out after {self.config.request_timeout}s")
            raise GenerationError(f"LLM request timed out: {e}") from e
        except Exception as e:
            logger.error(f"LLM generation failed: {type(e).__name__}: {e}")
            raise GenerationError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise GenerationError("LLM returned an empty response")
        return content
