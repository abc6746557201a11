"""Mistral chat client used as the structured text-generation backend.

Wraps the Mistral async chat API with:
- JSON mode and low, configurable temperature
- A requests-per-minute limiter (aiolimiter)
- Credit exhaustion (402) and rate limit (429) exception mapping
- Schema validation: output that does not conform is rejected, never returned
"""

from __future__ import annotations

import logging
from typing import Protocol, TypeVar

from aiolimiter import AsyncLimiter
from mistralai import Mistral
from mistralai.models.sdkerror import SDKError
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from aidir.extraction.parser import parse_chat_response

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CreditExhaustedException(Exception):
    """Raised when Mistral API returns 402 (Payment Required)."""

    pass


class RateLimitException(Exception):
    """Raised when Mistral API returns 429 (Too Many Requests)."""

    pass


class SchemaValidationError(Exception):
    """Raised when model output is not valid JSON for the requested schema."""

    pass


class StructuredGenerator(Protocol):
    async def generate_structured(
        self, system_prompt: str, user_prompt: str, schema: type[ModelT]
    ) -> ModelT: ...


class MistralClient:
    """Async wrapper around Mistral's chat completion API for fact extraction.

    Usage:
        client = MistralClient(api_key="...", model="mistral-medium-latest")
        timeline = await client.generate_structured(system, user, TimelineResponse)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "mistral-medium-latest",
        temperature: float = 0.1,
        rate_limit_rpm: int = 60,
        max_retries: int = 3,
    ) -> None:
        """Initialize the Mistral client.

        Args:
            api_key: Mistral API key.
            model: Model identifier.
            temperature: Sampling temperature (kept low for extraction).
            rate_limit_rpm: Maximum requests per minute.
            max_retries: Attempts for a rate-limited request.
        """
        self._client = Mistral(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._limiter = AsyncLimiter(rate_limit_rpm, 60)
        self._max_retries = max_retries
        self.total_tokens = 0

    async def _complete(self, messages: list[dict], max_tokens: int) -> object:
        try:
            async with self._limiter:
                return await self._client.chat.complete_async(
                    model=self._model,
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=max_tokens,
                    response_format={"type": "json_object"},
                )
        except SDKError as e:
            if e.status_code == 402:
                raise CreditExhaustedException(
                    f"Mistral credits exhausted (HTTP 402): {e}"
                ) from e
            if e.status_code == 429:
                raise RateLimitException(
                    f"Mistral rate limit exceeded (HTTP 429): {e}"
                ) from e
            raise

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: type[ModelT],
        max_tokens: int = 4000,
    ) -> ModelT:
        """Generate a response and validate it against *schema*.

        Returns:
            A validated instance of *schema*.

        Raises:
            SchemaValidationError: Output is not JSON or does not match the schema.
            CreditExhaustedException: On 402 (Payment Required).
            RateLimitException: On 429 after retries.
            SDKError: On other API errors.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=1, max=20),
            stop=stop_after_attempt(self._max_retries),
            retry=retry_if_exception_type(RateLimitException),
            reraise=True,
        ):
            with attempt:
                response = await self._complete(messages, max_tokens)

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.total_tokens += getattr(usage, "total_tokens", 0) or 0

        try:
            payload = parse_chat_response(response)
        except ValueError as e:
            raise SchemaValidationError(f"Unparseable output: {e}") from e
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            raise SchemaValidationError(
                f"Output does not match {schema.__name__}: {e.error_count()} errors"
            ) from e
