"""
Server-sent-event decoding for streaming HTTP responses.

Each event is a group of lines terminated by a blank line. Only `data:`
fields carry payload; multiple `data:` lines in one event are joined with
newlines. Comment lines (leading ':') and other fields are ignored.
"""

import json
from typing import Any, AsyncGenerator, AsyncIterator

import httpx

DONE_SENTINEL = "[DONE]"


class SSEDecodeError(ValueError):
    """An event's data payload was not valid JSON."""

    def __init__(self, payload: str, reason: str):
        super().__init__(f"Malformed SSE data ({reason}): {payload[:200]}")
        self.payload = payload


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncGenerator[str, None]:
    """
    Group raw lines into events and yield each event's data payload.

    A trailing event without a terminating blank line is still flushed
    when the stream ends.
    """
    data_lines: list[str] = []

    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)

    if data_lines:
        yield "\n".join(data_lines)


async def stream_sse(response: httpx.Response) -> AsyncGenerator[Any, None]:
    """
    Decode an httpx streaming response as SSE and yield parsed JSON payloads.

    Stops at a `[DONE]` payload. Raises SSEDecodeError on non-JSON data.
    """
    async for data in iter_sse_data(response.aiter_lines()):
        if data == DONE_SENTINEL:
            break
        try:
            yield json.loads(data)
        except json.JSONDecodeError as e:
            raise SSEDecodeError(data, e.msg) from e
