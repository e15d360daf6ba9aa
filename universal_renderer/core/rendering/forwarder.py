"""
Streaming Forwarder
===================

Host-side orchestration of one streaming render. The template is split at its
commit point, the initial segment is written to the outbound channel, and the
engine's stream is relayed behind it. Once the initial segment is committed
nothing can be retracted: a stream that never starts is closed out with the
unmodified remainder, a stream that dies midway is closed without further
writes.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from universal_renderer.config.logging import get_logger
from universal_renderer.core.markers import (
    StreamSegments,
    TemplateError,
    compose_document,
    split_for_stream,
)
from universal_renderer.models.schemas import StreamOutcome
from .base import RenderEngine

logger = get_logger(__name__)

Cleanup = Callable[[], Union[None, Awaitable[None]]]


class ChannelClosedError(Exception):
    """Exception raised when writing to an outbound channel that is gone."""

    pass


class OutboundChannel(Protocol):
    """Byte channel to the client of the host application."""

    @property
    def closed(self) -> bool: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


_EOF = object()


class QueueChannel:
    """
    Outbound channel backed by an ``asyncio.Queue``.

    The producer side is the forwarder; the consumer side iterates
    :meth:`iter_chunks`, typically as the body of a streaming HTTP response.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize)
        self._closed = False
        self._disconnected = False

    @property
    def closed(self) -> bool:
        return self._closed or self._disconnected

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ChannelClosedError("Outbound channel is closed")
        if data:
            await self._queue.put(bytes(data))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._disconnected:
            await self._queue.put(_EOF)

    def disconnect(self) -> None:
        """Mark the consumer as gone; later writes raise ChannelClosedError."""
        self._disconnected = True

    async def iter_chunks(self):
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            yield item


class StreamState(str, Enum):
    """States of one streaming session."""

    IDLE = "idle"
    TEMPLATE_SPLIT = "template_split"
    INITIAL_SEGMENT_COMMITTED = "initial_segment_committed"
    REMOTE_STREAM_ATTACHED = "remote_stream_attached"
    COMPLETED = "completed"
    ABORTED_MID_STREAM = "aborted_mid_stream"
    TAIL_WRITTEN = "tail_written"
    REJECTED = "rejected"
    CLOSED = "closed"


@dataclass
class StreamSession:
    """State of one streaming request."""

    channel: OutboundChannel
    url: str = ""
    segments: Optional[StreamSegments] = None
    committed: bool = False
    state: StreamState = StreamState.IDLE
    history: List[StreamState] = field(default_factory=lambda: [StreamState.IDLE])
    bytes_relayed: int = 0
    outcome: Optional[StreamOutcome] = None
    error: Optional[str] = None
    cleaned_up: bool = False

    def transition(self, state: StreamState) -> None:
        self.state = state
        self.history.append(state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "committed": self.committed,
            "bytes_relayed": self.bytes_relayed,
            "outcome": self.outcome.value if self.outcome else None,
            "error": self.error,
        }


class StreamingForwarder:
    """Drives an engine's stream into an outbound channel."""

    def __init__(self, engine: RenderEngine):
        self.engine = engine
        self.logger: Any = logger.bind(component="forwarder")  # structlog.BoundLoggerBase

    async def forward(
        self,
        url: str,
        props: Dict[str, Any],
        template: str,
        channel: OutboundChannel,
        cleanup: Optional[Cleanup] = None,
    ) -> StreamSession:
        """
        Stream one page into ``channel``.

        The channel is always closed and ``cleanup`` always runs exactly once
        when this returns or raises.

        Raises:
            TemplateError: If the template is empty or lacks the body marker.
                Nothing has been written to the channel in that case.
            asyncio.CancelledError: If the surrounding task is cancelled.
        """
        session = StreamSession(channel=channel, url=url)
        log = self.logger.bind(url=url)

        try:
            try:
                session.segments = split_for_stream(template)
            except TemplateError as e:
                session.error = str(e)
                session.transition(StreamState.REJECTED)
                log.warning("Streaming template rejected", error=str(e))
                raise
            session.transition(StreamState.TEMPLATE_SPLIT)

            await channel.write(session.segments.initial.encode("utf-8"))
            session.committed = True
            session.transition(StreamState.INITIAL_SEGMENT_COMMITTED)

            async def relay(chunk: bytes) -> None:
                if session.state is not StreamState.REMOTE_STREAM_ATTACHED:
                    session.transition(StreamState.REMOTE_STREAM_ATTACHED)
                await channel.write(chunk)
                session.bytes_relayed += len(chunk)

            outcome = await self.engine.stream(url, props, session.segments.remainder, relay)
            session.outcome = outcome
            await self._settle(session, url, props, log)

        except ChannelClosedError as e:
            session.error = str(e)
            session.transition(StreamState.ABORTED_MID_STREAM)
            log.info("Client disconnected during stream", bytes_relayed=session.bytes_relayed)
        except asyncio.CancelledError:
            session.error = "cancelled"
            session.transition(StreamState.ABORTED_MID_STREAM)
            log.info("Stream cancelled", bytes_relayed=session.bytes_relayed)
            raise
        finally:
            await self._finish(session, cleanup, log)

        return session

    async def _settle(
        self, session: StreamSession, url: str, props: Dict[str, Any], log: Any
    ) -> None:
        """Take the terminal edge matching the engine's outcome."""
        assert session.segments is not None
        outcome = session.outcome

        if outcome is StreamOutcome.ABORTED:
            session.transition(StreamState.ABORTED_MID_STREAM)
            log.warning("Stream aborted mid-stream, closing", bytes_relayed=session.bytes_relayed)
            return

        if outcome is StreamOutcome.COMPLETED and session.bytes_relayed:
            session.transition(StreamState.COMPLETED)
            log.info("Stream completed", bytes_relayed=session.bytes_relayed)
            return

        if outcome is StreamOutcome.UNSUPPORTED:
            log.info("Engine cannot stream, rendering buffered", engine=self.engine.name)
            result = await self.engine.render(url, props)
            tail = compose_document(session.segments.remainder, result)
        else:
            log.warning(
                "Stream did not start, writing template remainder",
                outcome=outcome.value if outcome else None,
            )
            tail = session.segments.remainder

        await session.channel.write(tail.encode("utf-8"))
        session.transition(StreamState.TAIL_WRITTEN)

    async def _finish(self, session: StreamSession, cleanup: Optional[Cleanup], log: Any) -> None:
        try:
            if not session.channel.closed:
                await session.channel.close()
        finally:
            session.transition(StreamState.CLOSED)
            if cleanup is not None and not session.cleaned_up:
                session.cleaned_up = True
                try:
                    result = cleanup()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    log.error("Stream cleanup failed", error=str(e))
