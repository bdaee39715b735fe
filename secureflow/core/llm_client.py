"""Unified LLM client for any OpenAI-compatible endpoint.

This file provides LLMClient, a thin wrapper around AsyncOpenAI exposing
`chat`, and `parse_json_safe`, which recovers a JSON document from model
output that may carry markdown fences or stray text.

Note: This module depends on the `openai` package for AsyncOpenAI.
"""
from typing import Any, Optional
import json
import logging
import re

from openai import AsyncOpenAI

from secureflow.core.config import Settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Custom exception for LLM client errors."""


class LLMClient:
    def __init__(self, base_url: Optional[str], api_key: str, model: str):
        self._client = AsyncOpenAI(base_url=base_url or None, api_key=api_key)
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(settings.LLM_BASE_URL, settings.LLM_API_KEY, settings.LLM_MODEL)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int = 2048,
        timeout: float = 120.0,
    ) -> str:
        """Send messages and return the text of the first choice."""
        logger.debug("LLM chat: model=%s messages=%d", self._model, len(messages))
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
                stream=False,
            )
        except Exception as e:
            raise LLMError(f"LLM request failed: {type(e).__name__}: {e}") from e

        # Some compatible providers return plain strings or dicts
        if isinstance(response, str):
            content = response
        elif isinstance(response, dict):
            choices = response.get("choices") or []
            if not choices:
                raise LLMError("Response has no choices (dict)")
            first = choices[0]
            message = first.get("message") or {}
            content = message.get("content") or first.get("text")
        else:
            choices = getattr(response, "choices", None) or []
            if not choices:
                raise LLMError("Response has empty choices list")
            message = getattr(choices[0], "message", None)
            if message is None:
                raise LLMError("Response choice has no 'message' attribute")
            content = getattr(message, "content", None)

        if content is None or not str(content).strip():
            raise LLMError("Response content is empty or whitespace only")
        return str(content).strip()


def parse_json_safe(text: str) -> Any:
    """
    Try to robustly parse JSON returned by LLMs that may include markdown
    or stray text. Strategy:
    - Strip triple-backtick code fences
    - Try json.loads directly
    - If that fails, search for the first JSON object or array with regex and parse it
    - Raise ValueError if no JSON found or parsing fails
    """
    if not text:
        raise ValueError("Empty text")

    text = re.sub(r"```(?:json)?\n", "", text)
    s = text.replace("```", "").strip()

    try:
        return json.loads(s)
    except json.JSONDecodeError:
        pass

    for pattern in (r"(\{(?:.|\n)*\})", r"(\[(?:.|\n)*\])"):
        match = re.search(pattern, s)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                continue

    raise ValueError("Could not parse JSON from LLM output")
