"""Backend gateway: the single chat-completion exchange.

Wraps an ``AsyncGroq`` client (any OpenAI-compatible endpoint works through
``base_url``) and reduces every transport problem to one failure kind.
"""

import asyncio
from typing import Any, Protocol

import groq
from groq import AsyncGroq

DEFAULT_MODEL = "llama-3.1-70b-versatile"
DEFAULT_TIMEOUT = 55.0


class TransportError(Exception):
    """Network failure, timeout, non-success status or an empty completion."""

    pass


class ChatBackend(Protocol):
    """What the engine needs from a completion backend."""

    async def chat(
        self, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str: ...


def clamp_temperature(value: float) -> float:
    """Clamp a temperature into the accepted 0.0-2.0 range."""
    return max(0.0, min(2.0, float(value)))


class ChatGateway:
    """ChatBackend implementation over AsyncGroq.

    Example:
        from groq import AsyncGroq
        from kindred.gateway import ChatGateway

        client = AsyncGroq(api_key="...", max_retries=0)
        gateway = ChatGateway(client, model="llama-3.1-70b-versatile")
        reply = await gateway.chat([{"role": "user", "content": "hi"}])
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the gateway.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model identifier sent with every request.
            temperature: Default sampling temperature.
            timeout: Hard limit in seconds for one exchange.
        """
        self._client = client
        self._model = model
        self.temperature = clamp_temperature(temperature)
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls,
        api_key: str | None,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "ChatGateway":
        """Build a gateway with its own client; SDK retries are disabled."""
        client = AsyncGroq(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout,
            max_retries=0,
        )
        return cls(client, model=model, temperature=temperature, timeout=timeout)

    async def chat(
        self, messages: list[dict[str, Any]], temperature: float | None = None
    ) -> str:
        """Send role-tagged blocks and return the first candidate's text.

        Args:
            messages: Ordered ``{"role", "content"}`` blocks.
            temperature: Override for the default temperature.

        Returns:
            The reply text (empty string when the candidate has no content).

        Raises:
            TransportError: On timeout, connection or status errors, or when
                the response carries no candidate.
        """
        temp = self.temperature if temperature is None else clamp_temperature(temperature)

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                    temperature=temp,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timed out after {self.timeout:g}s") from e
        except groq.APIStatusError as e:
            raise TransportError(f"HTTP error! status: {e.status_code}") from e
        except groq.APIError as e:
            raise TransportError(f"Request failed: {e}") from e

        if not getattr(response, "choices", None):
            raise TransportError("Response contained no choices")

        return response.choices[0].message.content or ""

    async def complete(self, prompt: str, temperature: float | None = None) -> str:
        """Send a single user prompt."""
        return await self.chat([{"role": "user", "content": prompt}], temperature)

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model
