"""Generation oracle: OpenAI chat completions behind a prompt-in/text-out call."""
from __future__ import annotations

import logging
from typing import Any

import openai
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from cmatch.config import settings
from cmatch.errors import UpstreamError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class GenerationError(UpstreamError):
    """Raised when the generation oracle fails or returns nothing."""

    def __init__(self, message: str) -> None:
        super().__init__(message, stage="generate")


class OpenAIGenerator:
    """Async chat-completion client with retry on transient API errors."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model or settings.llm.model
        self.temperature = settings.llm.temperature if temperature is None else temperature
        self.max_retries = max_retries or settings.llm.max_retries
        self.client = client or AsyncOpenAI(
            api_key=api_key or settings.llm.api_key,
            base_url=base_url or settings.llm.base_url,
            timeout=timeout or settings.llm.request_timeout_seconds,
            max_retries=0,
        )
        logger.info(f"OpenAIGenerator initialised (model={self.model})")

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = True,
        temperature: float | None = None,
    ) -> str:
        """Run one chat completion and return the message content.

        Raises:
            GenerationError: On API failure after retries or an empty reply
        """
        params: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        logger.debug(f"Chat request: model={self.model} json_mode={json_mode}")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=8),
                retry=retry_if_exception_type(_TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            logger.error(f"Chat completion failed: {e}")
            raise GenerationError(f"Generation oracle failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise GenerationError("Generation oracle returned an empty response")

        logger.debug(f"Token usage: {getattr(response, 'usage', None)}")
        return content
