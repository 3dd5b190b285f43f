"""Provider seam between the agents and the model SDKs.

An agent call is one request with no retries: the agent's standing
instructions from settings go in as the system prompt, the match context
bundle as the user prompt, and the reply is expected to carry a single JSON
object. Parsing that object is the agent's job, not the provider's.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

from objection.models import ModelResponse

T = TypeVar("T")


class ProviderError(Exception):
    """A model call produced no usable text: transport error, SDK error, timeout or empty reply."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """One configured model (an entry of the `models` table in settings.yaml)."""

    @abstractmethod
    def name(self) -> str:
        """Settings key for this model, used in logs and errors."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        ...

    @abstractmethod
    async def generate(self, system_prompt: str, prompt: str) -> ModelResponse:
        """Send one agent call and return the raw reply text with timing.

        Raises:
            ProviderError: Any failure. Agents treat it like an invalid reply.
        """
        ...

    async def _send(self, request: Awaitable[T], timeout_sec: float | None) -> T:
        """Await an SDK request, bounded by the model's `timeout_sec` (None waits forever)."""
        try:
            return await asyncio.wait_for(request, timeout=timeout_sec)
        except TimeoutError as exc:
            raise ProviderError(self.name(), f"Request timed out after {timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc
