"""Base agent abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Generic, Iterator, Optional, Sequence, TypeVar

from ..config import config
from ..models import Message
from ..services.anthropic import AnthropicClient

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class BaseAgent(ABC, Generic[InputT, OutputT]):
    """Abstract base class for Claude-backed agents.

    Subclasses define a name and a system prompt and implement `run`.
    """

    def __init__(
        self,
        client: Optional[AnthropicClient] = None,
        model: Optional[str] = None,
    ) -> None:
        """Initialize the agent.

        Args:
            client: AnthropicClient instance. Created if not provided.
            model: Model to use. Defaults to config.default_model.
        """
        self._model = model or config.default_model
        self._client = client or AnthropicClient(model=self._model)
        self._logger = logging.getLogger(f"{__name__}.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the agent's name."""
        ...

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        """Return the system prompt for this agent."""
        ...

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def run(self, input_data: InputT) -> OutputT:
        """Execute the agent's main task."""
        ...

    def _create_message(
        self,
        messages: Sequence[Message],
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Send a conversation with the agent's system prompt and return the reply."""
        self._logger.debug(f"Creating message from {len(messages)} turns")

        try:
            response = self._client.create_message(
                messages=[m.to_api() for m in messages],
                max_tokens=max_tokens,
                system=self.system_prompt,
                temperature=temperature,
            )
            self._logger.debug(f"Received response of length: {len(response)}")
            return response

        except Exception as e:
            self._logger.error(f"Error creating message: {e}")
            raise

    def _stream_message(
        self,
        messages: Sequence[Message],
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> Iterator[str]:
        """Like `_create_message` but yields the reply as text deltas."""
        self._logger.debug(f"Streaming message from {len(messages)} turns")

        try:
            yield from self._client.stream_message(
                messages=[m.to_api() for m in messages],
                max_tokens=max_tokens,
                system=self.system_prompt,
                temperature=temperature,
            )
        except Exception as e:
            self._logger.error(f"Error streaming message: {e}")
            raise
