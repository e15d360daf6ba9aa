"""
End-to-End Tests
================

A real rendering service served by uvicorn, reached through the remote
streaming engine and relayed by the streaming forwarder.
"""

import pytest

from universal_renderer.api.main import create_app
from universal_renderer.core.rendering.forwarder import StreamState, StreamingForwarder
from universal_renderer.core.rendering.remote import RemoteStreamingEngine
from universal_renderer.models.schemas import StreamOutcome

from tests.fixtures.apps import build_handlers
from tests.utils import RecordingChannel, free_port, running_server

TEMPLATE = "<html><head><!-- SSR_HEAD --></head><body><!-- SSR_BODY --></body></html>"

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_streamed_page_through_service(test_settings):
    """The relayed document has the head and body the service rendered."""
    async with running_server(create_app(build_handlers(), test_settings)) as base_url:
        engine = RemoteStreamingEngine(base_url, timeout=5.0)
        channel = RecordingChannel()
        try:
            session = await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)
        finally:
            await engine.close()

    assert channel.text == "<html><head><title>X</title></head><body><div>Y</div></body></html>"
    assert session.outcome == StreamOutcome.COMPLETED
    assert session.state == StreamState.CLOSED
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_buffered_render_through_service(test_settings):
    """Buffered renders parse the service payload."""
    async with running_server(create_app(build_handlers(), test_settings)) as base_url:
        engine = RemoteStreamingEngine(base_url, timeout=5.0)
        try:
            assert await engine.health_check() is True
            result = await engine.render("/p", {"title": "T", "body": "B"})
        finally:
            await engine.close()

    assert result is not None
    assert result.head == "<title>T</title>"
    assert result.body == "<div>B</div>"


@pytest.mark.asyncio
async def test_service_failure_mid_stream_is_in_band(test_settings):
    """A body failure on the service still completes the relayed document."""
    async with running_server(create_app(build_handlers(), test_settings)) as base_url:
        engine = RemoteStreamingEngine(base_url, timeout=5.0)
        channel = RecordingChannel()
        try:
            await StreamingForwarder(engine).forward("/boom", {}, TEMPLATE, channel)
        finally:
            await engine.close()

    assert channel.text.startswith("<html><head><title>X</title></head><body><div>")
    assert "<template data-ssr-error>" in channel.text
    assert channel.text.endswith("</body></html>")


@pytest.mark.asyncio
async def test_refused_connection_serves_template():
    """With nothing listening the client still receives the whole template."""
    engine = RemoteStreamingEngine(f"http://127.0.0.1:{free_port()}", timeout=1.0)
    channel = RecordingChannel()
    try:
        session = await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)
    finally:
        await engine.close()

    assert channel.text == TEMPLATE
    assert session.outcome == StreamOutcome.NOT_STARTED
    assert StreamState.TAIL_WRITTEN in session.history
