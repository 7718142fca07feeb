"""
Incremental decoding of server-sent-event completion streams.

Frames are newline-delimited. A frame may carry a ``data:`` prefix followed
by a JSON payload whose ``choices[0].delta.content`` holds the next text
delta; the literal ``[DONE]`` payload ends the stream. Network buffers can
split a frame anywhere (including inside a multi-byte character), so the
decoder keeps the trailing partial line of each chunk and prepends it to
the next one.
"""

import codecs
import inspect
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Callable, List, Optional, Union

from .cancellation import CancellationToken, race_cancellation

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
_IGNORED_FIELDS = ("event:", "id:", "retry:")

Sink = Callable[[str], Any]


class StreamDecoder:
    """Stateful decoder for one streamed response.

    Feed raw chunks with :meth:`feed` and call :meth:`finish` once the body
    closes. Each call returns the text deltas completed by that input.
    """

    def __init__(self) -> None:
        self._bytes = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._remainder = ""
        self._parts: List[str] = []
        self.done = False
        self.frames = 0
        self.malformed_frames = 0

    @property
    def transcript(self) -> str:
        """All text received so far."""
        return "".join(self._parts)

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """Consume one network chunk.

        Args:
            chunk: Raw bytes (or already-decoded text) from the response body

        Returns:
            Non-empty deltas completed by this chunk, in order
        """
        if self.done:
            return []
        text = chunk if isinstance(chunk, str) else self._bytes.decode(chunk)
        lines = (self._remainder + text).split("\n")
        self._remainder = lines.pop()
        return self._consume(lines)

    def finish(self) -> List[str]:
        """Flush the final unterminated line, if any."""
        if self.done:
            return []
        tail = self._remainder + self._bytes.decode(b"", final=True)
        self._remainder = ""
        return self._consume(tail.split("\n")) if tail else []

    def _consume(self, lines: List[str]) -> List[str]:
        deltas = []
        for line in lines:
            if self.done:
                break
            delta = self._parse_line(line)
            if delta:
                self._parts.append(delta)
                deltas.append(delta)
        return deltas

    def _parse_line(self, line: str) -> Optional[str]:
        line = line.strip()
        if not line or line.startswith(":") or line.startswith(_IGNORED_FIELDS):
            return None

        payload = line[len(DATA_PREFIX):].strip() if line.startswith(DATA_PREFIX) else line
        if not payload:
            return None
        if payload == DONE_SENTINEL:
            self.done = True
            return None

        self.frames += 1
        try:
            frame = json.loads(payload)
        except json.JSONDecodeError as e:
            self.malformed_frames += 1
            logger.warning("Invalid JSON in stream: %r (%s)", payload[:200], e)
            return None

        return extract_delta(frame)


def extract_delta(frame: Any) -> Optional[str]:
    """Pull ``choices[0].delta.content`` out of a decoded frame."""
    if not isinstance(frame, dict):
        return None
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


async def deliver(sink: Optional[Sink], text: str) -> None:
    """Hand the full transcript to a sync or async sink."""
    if sink is None:
        return
    result = sink(text)
    if inspect.isawaitable(result):
        await result


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


async def decode_stream(
    chunks: AsyncIterable[bytes],
    sink: Optional[Sink] = None,
    cancel: Optional[CancellationToken] = None,
) -> str:
    """Decode a streamed completion into its final transcript.

    The sink receives the full accumulated transcript after every non-empty
    delta. Failures raised by the chunk source (for example a non-success
    status before the first byte) propagate unchanged.

    Args:
        chunks: Async iterable of raw body chunks
        sink: Optional callable receiving the transcript so far
        cancel: Optional cancellation token observed between reads

    Returns:
        The complete transcript when the stream closes or sends ``[DONE]``

    Raises:
        RequestCancelled: If ``cancel`` fires while waiting for a chunk
    """
    decoder = StreamDecoder()
    iterator = chunks.__aiter__()
    chunk_count = 0
    transcript = ""
    try:
        while not decoder.done:
            chunk = await race_cancellation(_next_chunk(iterator), cancel)
            if chunk is None:
                break
            chunk_count += 1
            for delta in decoder.feed(chunk):
                transcript += delta
                await deliver(sink, transcript)

        for delta in decoder.finish():
            transcript += delta
            await deliver(sink, transcript)
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except RuntimeError as e:
                logger.warning("Failed to close stream source: %s", e)

    logger.debug(
        "Stream completed after %d chunks (%d frames, %d malformed)",
        chunk_count, decoder.frames, decoder.malformed_frames,
    )
    return transcript
