"""
Host Response Shim
==================

Thin FastAPI/Starlette adapter for host applications. It turns a request,
a property bag and a template into either a streamed response driven by the
:class:`StreamingForwarder` or a buffered HTML document. Nothing below this
module knows about Starlette request or response types.
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from fastapi import Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from universal_renderer.config.logging import get_logger
from universal_renderer.config.settings import Settings, get_settings
from universal_renderer.core.markers import TemplateError, compose_document, split_for_stream
from universal_renderer.core.props import PropsBag
from universal_renderer.core.rendering.base import RenderEngine
from universal_renderer.core.rendering.forwarder import Cleanup, QueueChannel, StreamingForwarder
from universal_renderer.core.rendering.selector import get_render_engine
from universal_renderer.service.handlers import maybe_await

logger = get_logger(__name__)

STREAMING_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Accel-Buffering": "no",
}

HTML_MEDIA_TYPE = "text/html"


def _log_forward_result(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Stream forwarding failed", error=str(exc), exc_info=exc)


class ForwardingResponse(StreamingResponse):
    """
    Streaming response that owns the task forwarding into its channel.

    The task is cancelled when the response ends before the channel is
    drained, whether the body was abandoned midway or never iterated because
    the client was gone before the first send.
    """

    def __init__(
        self,
        task: "asyncio.Task[Any]",
        channel: QueueChannel,
        url: str,
        status_code: int = 200,
    ):
        self.task = task
        self.channel = channel
        self.url = url
        self.drained = False
        self.abandoned = False
        super().__init__(
            self._chunks(),
            status_code=status_code,
            headers=STREAMING_HEADERS,
            media_type=HTML_MEDIA_TYPE,
        )

    async def _chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.channel.iter_chunks():
                yield chunk
            self.drained = True
        finally:
            self.abandon()

    def abandon(self) -> None:
        """Stop forwarding unless the whole document has been sent."""
        if self.drained or self.abandoned or self.task.done():
            return
        self.abandoned = True
        logger.info("Client disconnected, cancelling stream", url=self.url)
        self.channel.disconnect()
        # a task that has not run yet fails its first write and cleans up itself
        asyncio.get_running_loop().call_soon(self.task.cancel)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.abandon()


class HostRenderer:
    """Renders pages for a host application through a render engine."""

    def __init__(
        self,
        engine: Optional[RenderEngine] = None,
        *,
        settings: Optional[Settings] = None,
        streaming: Optional[bool] = None,
        queue_size: int = 64,
    ):
        self.settings = settings or get_settings()
        self._engine = engine
        self.streaming = self.settings.streaming_enabled if streaming is None else streaming
        self.queue_size = queue_size

    @property
    def engine(self) -> RenderEngine:
        return self._engine if self._engine is not None else get_render_engine()

    async def render_page(
        self,
        request: Optional[Request],
        template: str,
        props: Union[PropsBag, Mapping[str, Any], None] = None,
        *,
        url: Optional[str] = None,
        cleanup: Optional[Cleanup] = None,
        status_code: int = 200,
    ) -> Response:
        """
        Render ``template`` for ``request``.

        Streams when streaming is enabled and the engine can stream; otherwise
        renders buffered and composes the document. A template without the
        body marker is rejected with a 400 on the streaming path.
        ``status_code`` applies to the document on both paths.
        """
        if url is None:
            if request is None:
                raise ValueError("either request or url is required")
            url = str(request.url)
        props_dict = props.to_dict() if isinstance(props, PropsBag) else dict(props or {})
        engine = self.engine

        if self.streaming and engine.supports_streaming:
            return await self._stream(url, props_dict, template, engine, cleanup, status_code)

        try:
            result = await engine.render(url, props_dict)
        finally:
            if cleanup is not None:
                await maybe_await(cleanup())
        return HTMLResponse(compose_document(template, result), status_code=status_code)

    async def _stream(
        self,
        url: str,
        props: Dict[str, Any],
        template: str,
        engine: RenderEngine,
        cleanup: Optional[Cleanup],
        status_code: int = 200,
    ) -> Response:
        try:
            split_for_stream(template)
        except TemplateError as e:
            logger.warning("Streaming template rejected", url=url, error=str(e))
            if cleanup is not None:
                await maybe_await(cleanup())
            return PlainTextResponse(str(e), status_code=400)

        channel = QueueChannel(maxsize=self.queue_size)
        forwarder = StreamingForwarder(engine)
        task = asyncio.create_task(forwarder.forward(url, props, template, channel, cleanup))
        task.add_done_callback(_log_forward_result)
        return ForwardingResponse(task, channel, url, status_code=status_code)


async def render_page(
    request: Optional[Request],
    template: str,
    props: Union[PropsBag, Mapping[str, Any], None] = None,
    *,
    engine: Optional[RenderEngine] = None,
    streaming: Optional[bool] = None,
    url: Optional[str] = None,
    cleanup: Optional[Cleanup] = None,
    status_code: int = 200,
) -> Response:
    """Render one page with a one-off :class:`HostRenderer`."""
    renderer = HostRenderer(engine, streaming=streaming)
    return await renderer.render_page(
        request, template, props, url=url, cleanup=cleanup, status_code=status_code
    )
