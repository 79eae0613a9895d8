# carefront/llm/client.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import cached_property
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from carefront.config import get_settings
from carefront.errors import (
    BackendError,
    BackendUnavailableError,
    ConfigurationError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

# Substrings providers put in quota / throttling errors
RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")

Message = Dict[str, Any]


def looks_rate_limited(detail: str) -> bool:
    return any(marker.lower() in detail.lower() for marker in RATE_LIMIT_MARKERS)


class LLMClient(ABC):
    """
    Simple abstraction so we can swap providers if needed.

    Implementations raise RateLimitedError, BackendUnavailableError or
    BackendError; never provider-specific exceptions.
    """

    @abstractmethod
    async def chat(
        self,
        messages: List[Message],
        temperature: float = 0.2,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """
        messages: list of {"role": "system"|"user"|"assistant", "content": ...}
        where content is a string or a list of OpenAI content parts.
        returns: assistant content as a string
        """
        ...


class OpenAILLMClient(LLMClient):
    """
    OpenAI implementation using the official async Python client.
    """

    def __init__(self, model: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.default_model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds

    @cached_property
    def client(self) -> AsyncOpenAI:
        """
        Built on the first backend call, so operations that never reach the
        model keep working without OPENAI_API_KEY.
        """
        settings = get_settings()
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set in environment (.env).")

        # Retries are the caller's decision, so the SDK's own retry loop is off
        return AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def chat(
        self,
        messages: List[Message],
        temperature: float = 0.2,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        kwargs: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = await self.client.chat.completions.create(**kwargs)
        except openai.RateLimitError as exc:
            raise RateLimitedError(str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise BackendUnavailableError(f"LLM request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise BackendUnavailableError(f"LLM connection failed: {exc}") from exc
        except openai.APIError as exc:
            if looks_rate_limited(str(exc)):
                raise RateLimitedError(str(exc)) from exc
            raise BackendError(str(exc)) from exc

        if not completion.choices:
            return ""
        content = completion.choices[0].message.content
        return content or ""
