"""
Render Handlers
===============

Callback bundle an application registers with the rendering service, and the
orchestration shared by every surface that serves it (HTTP and stdio).

``setup(url, props)`` builds a per-request context, ``render(context)`` turns
it into a :class:`RenderResult` (or a mapping / plain body string), and
``cleanup(context)`` releases whatever setup acquired. Streaming additionally
needs ``stream.body(context)`` yielding HTML chunks and, optionally,
``stream.head(context)`` producing head tags. Any callback may be sync or async.
"""

import html
import inspect
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Union

from universal_renderer.config.logging import get_logger
from universal_renderer.core.markers import inject_head, split
from universal_renderer.models.schemas import RenderResult

logger = get_logger(__name__)

Chunk = Union[str, bytes]
SetupCallback = Callable[[str, Dict[str, Any]], Any]
RenderCallback = Callable[[Any], Any]
CleanupCallback = Callable[[Any], Union[None, Awaitable[None]]]


async def maybe_await(value: Any) -> Any:
    """Resolve ``value`` if it is awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


class RenderServiceError(Exception):
    """Exception raised when an application callback fails while serving a request."""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


def coerce_result(output: Any) -> RenderResult:
    """Normalize whatever a render callback returned."""
    if isinstance(output, RenderResult):
        return output
    if isinstance(output, Mapping):
        return RenderResult.model_validate(dict(output))
    if isinstance(output, str):
        return RenderResult(body=output)
    raise TypeError(f"render callback returned {type(output).__name__}, expected RenderResult")


@dataclass
class StreamCallbacks:
    """Callbacks used by the streaming endpoint."""

    body: Callable[[Any], Any]
    head: Optional[Callable[[Any], Any]] = None


@dataclass
class RenderHandlers:
    """Application callbacks served by the rendering service."""

    setup: SetupCallback
    render: RenderCallback
    cleanup: Optional[CleanupCallback] = None
    stream: Optional[StreamCallbacks] = None

    def __post_init__(self) -> None:
        if not callable(self.setup):
            raise ValueError("setup callback is required")
        if not callable(self.render):
            raise ValueError("render callback is required")

    @property
    def supports_streaming(self) -> bool:
        return self.stream is not None


class _CleanupOnce:
    """Runs the cleanup callback for one context at most once."""

    def __init__(self, cleanup: Optional[CleanupCallback], context: Any):
        self.cleanup = cleanup
        self.context = context
        self.done = False

    async def __call__(self) -> None:
        if self.done or self.cleanup is None:
            return
        self.done = True
        try:
            await maybe_await(self.cleanup(self.context))
        except Exception as e:
            logger.error("Render cleanup failed", error=str(e))


async def render_once(handlers: RenderHandlers, url: str, props: Dict[str, Any]) -> RenderResult:
    """
    Run setup, render and cleanup for one non-streaming request.

    Raises:
        Exception: Whatever setup or render raised; cleanup has run by then
            if setup produced a context.
    """
    context = await maybe_await(handlers.setup(url, props))
    cleanup = _CleanupOnce(handlers.cleanup, context)
    try:
        return coerce_result(await maybe_await(handlers.render(context)))
    finally:
        await cleanup()


def error_template(error: BaseException) -> str:
    """In-band error marker placed in a document whose head is already sent."""
    message = html.escape(str(error), quote=False)
    return f"<template data-ssr-error>Error during rendering: {message}</template>"


def close_out_tail(tail: str, error: BaseException) -> str:
    """Complete a document after a mid-stream failure."""
    marker = error_template(error)
    if "</body>" in tail:
        return tail.replace("</body>", f"{marker}\n</body>", 1)
    return f"{marker}{tail}"


async def _iter_chunks(source: Any) -> AsyncIterator[bytes]:
    if isinstance(source, (str, bytes)):
        source = [source]
    if hasattr(source, "__aiter__"):
        async for chunk in source:
            if chunk:
                yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
    else:
        for chunk in source:
            if chunk:
                yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)


async def open_stream(
    handlers: RenderHandlers, url: str, props: Dict[str, Any], template: str
) -> AsyncIterator[bytes]:
    """
    Prepare a streamed document for one request.

    Setup and head generation happen here, so their failures surface before
    any byte is produced. The returned iterator yields the head segment, the
    body chunks and the tail; a body failure closes the document out with an
    in-band error marker. Cleanup runs once the iterator finishes or is closed.

    Raises:
        RuntimeError: If the handlers have no stream callbacks
        MissingMarkerError: If the template lacks the body marker
    """
    if handlers.stream is None:
        raise RuntimeError("stream callbacks are not configured")
    stream = handlers.stream

    segments = split(template)
    context = await maybe_await(handlers.setup(url, props))
    cleanup = _CleanupOnce(handlers.cleanup, context)

    try:
        head = await maybe_await(stream.head(context)) if stream.head else None
        body = stream.body(context)
    except BaseException:
        await cleanup()
        raise

    opening = inject_head(segments.before_body, head)
    tail = segments.after_body
    log = logger.bind(url=url)

    async def document() -> AsyncIterator[bytes]:
        try:
            yield opening.encode("utf-8")
            try:
                async for chunk in _iter_chunks(body):
                    yield chunk
            except Exception as e:
                log.error("Render stream error", error=str(e))
                yield close_out_tail(tail, e).encode("utf-8")
                return
            yield tail.encode("utf-8")
        finally:
            await cleanup()

    return document()
