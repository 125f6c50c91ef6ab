"""
上游 SSE 解帧与 OpenAI chunk 构建。从 router 拆出，便于维护与单测。

The backend streams `data: {...}` lines whose JSON carries a `type`
discriminator; only `text-delta` events contribute generated text.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterable, Awaitable, Callable

import anyio
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from auibridge.adapters.openai_compat.mapper import new_completion_id, to_chat_chunk
from auibridge.core.errors import UpstreamStreamError
from auibridge.core.models import TextDelta, parse_upstream_event
from auibridge.util.debug_excerpt import debug_log_original
from auibridge.util.logger import log_event, logger

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


def _extract_sse_data_payload(line: str) -> str | None:
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


class SSELineDecoder:
    """Incremental bytes -> `data:` payload framing.

    Multi-byte sequences split across reads are carried by the incremental
    decoder; an unterminated last line stays buffered until the next feed.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._buffer += text
        if "\n" not in text:
            return []
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        payloads: list[str] = []
        for line in lines:
            payload = _extract_sse_data_payload(line)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def close(self) -> str:
        """Flush the decoder and return (and drop) any unterminated trailing text."""
        self._buffer += self._decoder.decode(b"", final=True)
        leftover, self._buffer = self._buffer, ""
        return leftover

    @property
    def pending(self) -> str:
        return self._buffer


def _text_from_payload(payload: str) -> str | None:
    if payload == SSE_DONE:
        return None
    event = parse_upstream_event(payload)
    if event is None:
        debug_log_original("upstream_line_unparsed", payload, max_len=200)
        return None
    if isinstance(event, TextDelta):
        return event.text
    return None


async def iter_text_deltas(byte_stream: AsyncIterable[bytes]) -> AsyncGenerator[str, None]:
    """Yield generated text units in arrival order until the body ends."""
    decoder = SSELineDecoder()
    async for chunk in byte_stream:
        for payload in decoder.feed(chunk):
            text = _text_from_payload(payload)
            if text:
                yield text
    leftover = decoder.close()
    if leftover.strip():
        logger.debug("upstream stream ended with unterminated line chars=%d", len(leftover))


async def collect_text(byte_stream: AsyncIterable[bytes]) -> str:
    parts: list[str] = []
    async for text in iter_text_deltas(byte_stream):
        parts.append(text)
    return "".join(parts)


def _sse_frame(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_chunk_sse(completion_id: str, model: str, content: str, created: int) -> bytes:
    return _sse_frame(to_chat_chunk(completion_id, model, content, created=created).model_dump())


def _stream_error_sse_chunk(message: str, code: str | None = None) -> bytes:
    """SSE chunk 携带上游失败原因，兼容 error.message / error.code 解析。"""
    detail = (message or "upstream_error").strip() or "upstream_error"
    error_code = (code or "upstream_error").strip() or "upstream_error"
    return _sse_frame(
        {
            "error": {
                "message": detail,
                "type": "auibridge_error",
                "code": error_code,
            }
        }
    )


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


@dataclass(frozen=True, slots=True)
class _StreamFailure:
    error: BaseException


_END_OF_STREAM = object()


async def _pump_text_deltas(byte_stream: AsyncIterable[bytes], queue: asyncio.Queue) -> None:
    try:
        async for text in iter_text_deltas(byte_stream):
            await queue.put(text)
    except Exception as exc:
        await queue.put(_StreamFailure(exc))
        return
    await queue.put(_END_OF_STREAM)


async def stream_chat_chunks(
    byte_stream: AsyncIterable[bytes],
    *,
    model: str,
    queue_size: int = 64,
    on_close: Callable[[], Awaitable[None]] | None = None,
) -> AsyncGenerator[bytes, None]:
    """Producer task -> bounded queue -> SSE frames.

    On upstream read failure an error frame is written, no `[DONE]` follows,
    and UpstreamStreamError aborts the outbound response. Closing the
    generator early (client gone) cancels the producer.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
    producer = asyncio.create_task(_pump_text_deltas(byte_stream, queue))
    completion_id = new_completion_id()
    created = int(time.time())
    chunk_count = 0
    finished = False
    try:
        while True:
            item = await queue.get()
            if item is _END_OF_STREAM:
                yield _stream_done_sse_chunk()
                finished = True
                log_event("stream_finished", completion_id=completion_id, chunks=chunk_count)
                return
            if isinstance(item, _StreamFailure):
                detail = str(item.error) or type(item.error).__name__
                logger.error("chat stream upstream failure completion_id=%s error=%s", completion_id, detail)
                yield _stream_error_sse_chunk(f"upstream_stream_error: {detail}", code="upstream_stream_error")
                raise UpstreamStreamError(detail) from item.error
            chunk_count += 1
            yield _stream_chunk_sse(completion_id, model, item, created)
    finally:
        # 断开连接时外层 cancel scope 会反复取消，清理必须屏蔽取消
        with anyio.CancelScope(shield=True):
            try:
                if not producer.done():
                    producer.cancel()
                    await asyncio.wait([producer])
            finally:
                if not finished:
                    logger.info("chat stream closed early completion_id=%s chunks=%d", completion_id, chunk_count)
                if on_close is not None:
                    await on_close()


class UpstreamStreamingResponse(StreamingResponse):
    """StreamingResponse that always closes its body iterator and the upstream.

    Covers a client that disconnects before the first chunk is pulled, in
    which case the generator never starts and its own cleanup never runs.
    """

    def __init__(
        self,
        content: AsyncIterable[bytes],
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                try:
                    aclose = getattr(self.body_iterator, "aclose", None)
                    if aclose is not None:
                        await aclose()
                finally:
                    if self._on_close is not None:
                        await self._on_close()


def _build_streaming_response(
    generator: AsyncIterable[bytes],
    headers: dict[str, str] | None = None,
    on_close: Callable[[], Awaitable[None]] | None = None,
) -> StreamingResponse:
    merged = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    merged.update(headers or {})
    return UpstreamStreamingResponse(generator, on_close=on_close, media_type="text/event-stream", headers=merged)
