"""Anthropic Claude API client wrapper."""

import logging
import time
from typing import Iterator, Optional

from anthropic import Anthropic, APIError, APIConnectionError, RateLimitError

from ..config import config

logger = logging.getLogger(__name__)


class AnthropicClient:
    """Client wrapper for Anthropic Claude API with retry logic."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key. Defaults to ANTHROPIC_API_KEY env var.
            model: Model to use. Defaults to config.default_model.
            max_retries: Maximum number of retry attempts for failed requests.
            retry_delay: Base delay between retries in seconds (exponential backoff).
        """
        self._api_key = api_key or config.anthropic_api_key
        if not self._api_key:
            raise ValueError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY env var."
            )

        self._client = Anthropic(api_key=self._api_key)
        self._model = model or config.default_model
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        system: Optional[str],
        temperature: float,
    ) -> dict:
        kwargs = {
            "model": self._model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._retry_delay * (2**attempt)
        logger.warning(f"{reason}. Retrying in {delay:.1f}s...")
        time.sleep(delay)

    def create_message(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> str:
        """Create a message using Claude.

        Args:
            messages: Conversation turns as role/content dicts, oldest first.
            max_tokens: Maximum tokens in the response.
            system: Optional system prompt.
            temperature: Sampling temperature (0.0-1.0).

        Returns:
            The text content of Claude's response.

        Raises:
            APIError: If the API request fails after all retries.
        """
        kwargs = self._request_kwargs(messages, max_tokens, system, temperature)

        for attempt in range(self._max_retries):
            try:
                logger.debug(
                    f"Sending request to Claude (attempt {attempt + 1}/{self._max_retries})"
                )
                response = self._client.messages.create(**kwargs)

                # Extract text content from response
                content = response.content[0]
                if hasattr(content, "text"):
                    return content.text
                return str(content)

            except RateLimitError:
                if attempt == self._max_retries - 1:
                    raise
                self._backoff(attempt, "Rate limited")

            except APIConnectionError as e:
                if attempt == self._max_retries - 1:
                    raise
                self._backoff(attempt, f"Connection error: {e}")

            except APIError as e:
                logger.error(f"API error: {e}")
                raise

        raise RuntimeError("Max retries exceeded")

    def stream_message(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = 4096,
        system: Optional[str] = None,
        temperature: float = 0.7,
    ) -> Iterator[str]:
        """Stream a Claude response as text deltas.

        Connection and rate-limit errors are retried only before the first
        delta has been yielded; a stream that breaks midway propagates.
        """
        kwargs = self._request_kwargs(messages, max_tokens, system, temperature)

        for attempt in range(self._max_retries):
            started = False
            try:
                with self._client.messages.stream(**kwargs) as stream:
                    for text in stream.text_stream:
                        started = True
                        yield text
                return

            except (RateLimitError, APIConnectionError) as e:
                if started or attempt == self._max_retries - 1:
                    raise
                self._backoff(attempt, f"Stream failed to start: {e}")

            except APIError as e:
                logger.error(f"API error: {e}")
                raise
