"""
MlxLmAdapter - MLX-LM server implementation of CompletionProvider.

Talks to the two endpoints an `mlx_lm` server exposes:
- GET  info:     model id and context length, probed once at startup
- POST generate: raw-prompt completion, streamed as server-sent events

The server has no structured chat endpoint. Chat is emulated by flattening
messages into "role: content" lines.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional, Union

import httpx
from pydantic import ValidationError

from mlx_bridge.adapters.schema import CompletionOptions, ServerInfo, StreamEvent
from mlx_bridge.config import (
    DEFAULT_API_BASE,
    DEFAULT_CONTEXT_LENGTH,
    DEFAULT_TEMPERATURE,
    Message,
    ProviderConfig,
)
from mlx_bridge.sse import SSEDecodeError, stream_sse

logger = logging.getLogger(__name__)


class MlxLmError(Exception):
    """MLX server adapter error."""
    pass


class MlxServerError(MlxLmError):
    """Non-success HTTP status from the generate endpoint."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"MLX server error: {body}")
        self.status_code = status_code
        self.body = body


class MlxGenerationError(MlxLmError):
    """The server reported an error inside the event stream."""
    pass


class RequestAborted(MlxLmError):
    """The caller's abort signal was set before or during a request."""
    pass


ChatInput = Union[Message, dict]


class MlxLmAdapter:
    """
    MLX-LM implementation of CompletionProvider protocol.

    Construction schedules a best-effort GET of the server's info endpoint.
    When it lands, `model` and `context_length` take the server's values.
    Calls made before then use the configured defaults.

    Usage:
        adapter = MlxLmAdapter(api_base="http://localhost:8000/")
        async for chunk in adapter.stream_complete("Once upon a time"):
            print(chunk, end="")
    """

    provider_name = "mlx_lm"
    default_options: dict[str, Any] = {
        "api_base": DEFAULT_API_BASE,
        "context_length": DEFAULT_CONTEXT_LENGTH,
    }

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        *,
        probe: bool = True,
        **overrides: Any,
    ):
        """
        Initialize adapter.

        Args:
            config: Base settings. Fields it leaves unset fall back to
                default_options.
            probe: Query the info endpoint for model metadata.
            **overrides: ProviderConfig fields that win over `config`.
        """
        settings = dict(self.default_options)
        if config is not None:
            settings.update(config.model_dump(exclude_unset=True))
        settings.update(overrides)
        self.config = ProviderConfig(**settings)

        self._probe_enabled = probe
        self._probe_task: Optional[asyncio.Task] = None
        self._start_probe()

    # ─────────────────────────────────────────────────────────────────
    # CONFIG ACCESSORS
    # ─────────────────────────────────────────────────────────────────

    @property
    def api_base(self) -> str:
        return self.config.api_base

    @property
    def api_key(self) -> Optional[str]:
        return self.config.api_key

    @property
    def model(self) -> str:
        return self.config.model

    @model.setter
    def model(self, value: str) -> None:
        self.config.model = value

    @property
    def context_length(self) -> int:
        return self.config.context_length

    @context_length.setter
    def context_length(self, value: int) -> None:
        self.config.context_length = value

    def _url(self, endpoint: str) -> str:
        # Resolved like a relative link: "http://h/v1/" + "info" -> "http://h/v1/info"
        return str(httpx.URL(self.config.api_base).join(endpoint))

    # ─────────────────────────────────────────────────────────────────
    # STARTUP PROBE
    # ─────────────────────────────────────────────────────────────────

    def _start_probe(self) -> None:
        """Schedule the info probe once, if an event loop is running."""
        if not self._probe_enabled or self._probe_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Constructed outside a loop; the first async call starts it
            return
        self._probe_task = loop.create_task(self._fetch_server_info())

    async def _fetch_server_info(self) -> None:
        """Apply the server's model id and context length. Never raises."""
        try:
            url = self._url("info")
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Failed to fetch MLX server info: %s", e)
            return

        if not response.is_success:
            logger.warning("Error fetching MLX server info: %s", response.text)
            return

        try:
            info = ServerInfo.model_validate(response.json())
        except ValueError as e:
            logger.warning("Unreadable MLX server info from %s: %s", url, e)
            return

        if info.model_id is not None:
            self.model = info.model_id
        if info.max_tokens is not None:
            self.context_length = info.max_tokens
        logger.debug(
            "MLX server info: model=%s context_length=%d",
            self.model, self.context_length,
        )

    async def wait_ready(self) -> None:
        """Wait for the startup probe to finish. Probe failures are not raised."""
        self._start_probe()
        task = self._probe_task
        if task is None or task.cancelled():
            return
        await task

    async def aclose(self) -> None:
        """Cancel the startup probe if it is still running."""
        task = self._probe_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "MlxLmAdapter":
        self._start_probe()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────
    # REQUEST CONSTRUCTION
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _convert_args(options: CompletionOptions, prompt: str) -> dict:
        """Map generic options onto the generate request body."""
        temperature = options.temperature
        if temperature is None:
            temperature = DEFAULT_TEMPERATURE
        return {
            "prompt": prompt,
            "max_tokens": options.max_tokens,
            "temperature": temperature,
            "top_p": options.top_p,
            "top_k": options.top_k,
            "stop": options.stop,
            "stream": True,
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        headers.update(self.config.extra_headers)
        return headers

    # ─────────────────────────────────────────────────────────────────
    # STREAMING
    # ─────────────────────────────────────────────────────────────────

    async def stream_complete(
        self,
        prompt: str,
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream completion text from the generate endpoint.

        Args:
            prompt: Raw prompt text
            signal: Optional abort event. Setting it aborts the request,
                including a connect or read that is waiting on the server.
            options: Sampling options; temperature defaults to 0.7

        Yields:
            Content fragments in server order

        Raises:
            MlxServerError: Non-success HTTP status (body in message)
            MlxGenerationError: Server sent an `error` event
            RequestAborted: `signal` was set
        """
        self._start_probe()
        payload = self._convert_args(options or CompletionOptions(), prompt)

        if signal is not None and signal.is_set():
            raise RequestAborted("MLX request aborted before sending")

        abort = asyncio.ensure_future(signal.wait()) if signal is not None else None
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                request = client.build_request(
                    "POST",
                    self._url("generate"),
                    json=payload,
                    headers=self._headers(),
                )
                response = await _until_aborted(client.send(request, stream=True), abort)
                try:
                    if not response.is_success:
                        error_body = await _until_aborted(response.aread(), abort)
                        raise MlxServerError(
                            response.status_code,
                            error_body.decode("utf-8", errors="replace"),
                        )

                    async for chunk in self._iter_content(response, signal, abort):
                        yield chunk
                finally:
                    await response.aclose()
        finally:
            if abort is not None:
                abort.cancel()

    async def _iter_content(
        self,
        response: httpx.Response,
        signal: Optional[asyncio.Event],
        abort: Optional[asyncio.Future],
    ) -> AsyncGenerator[str, None]:
        """Apply the error/content rule to each decoded event."""
        events = stream_sse(response)
        try:
            while True:
                data = await _until_aborted(_next_or_end(events), abort)
                if data is _END:
                    return
                if signal is not None and signal.is_set():
                    raise RequestAborted("MLX request aborted")
                event = self._parse_event(data)
                if event.error:
                    raise MlxGenerationError(f"MLX generation error: {event.error}")
                if event.content:
                    yield event.content
        except (asyncio.CancelledError, RequestAborted):
            raise
        except SSEDecodeError as e:
            logger.error("MLX streaming error: %s", e)
            raise MlxLmError(str(e)) from e
        except Exception as e:
            logger.error("MLX streaming error: %s", e)
            raise
        finally:
            await events.aclose()

    @staticmethod
    def _parse_event(data: Any) -> StreamEvent:
        try:
            return StreamEvent.model_validate(data)
        except ValidationError as e:
            raise MlxLmError(f"Unexpected MLX stream event: {data!r}") from e

    async def stream_chat(
        self,
        messages: list[ChatInput],
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> AsyncGenerator[Message, None]:
        """Emulated chat: flatten messages into one prompt, wrap fragments."""
        prompt = flatten_messages(messages)
        async for chunk in self.stream_complete(prompt, signal, options):
            yield Message(role="assistant", content=chunk)

    async def complete(
        self,
        prompt: str,
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> str:
        """Non-streaming completion: the joined fragments."""
        chunks = [c async for c in self.stream_complete(prompt, signal, options)]
        return "".join(chunks)

    async def chat(
        self,
        messages: list[ChatInput],
        signal: Optional[asyncio.Event] = None,
        options: Optional[CompletionOptions] = None,
    ) -> Message:
        """Non-streaming chat: one assistant message with the full reply."""
        parts = [m.get_text() async for m in self.stream_chat(messages, signal, options)]
        return Message(role="assistant", content="".join(parts))

    # ─────────────────────────────────────────────────────────────────
    # CAPABILITIES
    # ─────────────────────────────────────────────────────────────────

    def supports_chat(self) -> bool:
        """Chat is emulated over the raw completion endpoint."""
        return True

    def supports_fim(self) -> bool:
        return False


def flatten_messages(messages: list[ChatInput]) -> str:
    """Render messages as newline-joined "role: content" lines."""
    lines = []
    for msg in messages:
        if isinstance(msg, dict):
            msg = Message.model_validate(msg)
        lines.append(f"{msg.role}: {msg.get_text()}")
    return "\n".join(lines)


_END = object()


async def _next_or_end(events: AsyncGenerator) -> Any:
    """Next item from `events`, or _END when it is exhausted."""
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _END


async def _until_aborted(awaitable, abort: Optional[asyncio.Future]) -> Any:
    """
    Await `awaitable` unless `abort` completes first.

    The work runs in its own task so a stalled connect or read can be
    cancelled. Raises RequestAborted when abort wins.
    """
    if abort is None:
        return await awaitable

    work = asyncio.ensure_future(awaitable)
    try:
        await asyncio.wait({work, abort}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not work.done():
            work.cancel()
            await asyncio.wait({work})
    if work.cancelled():
        raise RequestAborted("MLX request aborted")
    return work.result()
