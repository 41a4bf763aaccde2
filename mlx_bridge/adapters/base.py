"""
CompletionProvider Protocol - defines the contract for completion backends.

This is the WHAT (interface), not the HOW (implementation).
See mlx_lm.py for concrete implementation.
"""

import asyncio
from typing import Protocol, AsyncGenerator, Optional

from mlx_bridge.adapters.schema import CompletionOptions
from mlx_bridge.config import Message


class CompletionProvider(Protocol):
    """
    Contract for completion backends used by the client.

    Implementations must provide:
    - Streaming completion (stream_complete)
    - Streaming chat (stream_chat), native or emulated
    - Capability flags (supports_chat, supports_fim)

    `model` and `context_length` may change once after construction,
    when the backend reports its own values.
    """

    provider_name: str
    api_base: str
    model: str
    context_length: int

    async def wait_ready(self) -> None:
        """Wait until startup metadata discovery has finished (or failed)."""
        ...

    async def aclose(self) -> None:
        """Stop background work started by the provider."""
        ...

    async def stream_complete(
        self,
        prompt: str,
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream completion text for a raw prompt.

        Args:
            prompt: Prompt text sent verbatim
            signal: Optional event; setting it aborts the request
            options: Sampling options

        Yields:
            Text fragments in the order the server emits them

        Raises:
            Exception on server or transport error (fail loudly)
        """
        ...

    async def stream_chat(
        self,
        messages: list[Message],
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> AsyncGenerator[Message, None]:
        """
        Stream assistant turns for a conversation.

        Yields:
            Message(role="assistant") per fragment
        """
        ...

    def supports_chat(self) -> bool:
        ...

    def supports_fim(self) -> bool:
        ...
