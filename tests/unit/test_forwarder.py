"""
Unit Tests for the Streaming Forwarder
======================================

Terminal edges of a streaming session: completion, pre-stream failure,
mid-stream abort, buffered fallback, rejection and cancellation.
"""

import asyncio

import pytest

from universal_renderer.core.markers import MissingMarkerError, TemplateError
from universal_renderer.core.rendering.forwarder import (
    ChannelClosedError,
    QueueChannel,
    StreamingForwarder,
    StreamState,
)
from universal_renderer.models.schemas import RenderResult, StreamOutcome

from tests.utils.mocks import FakeEngine, RecordingChannel, service_chunks

TEMPLATE = "<html><head><!-- SSR_HEAD --></head><body><!-- SSR_BODY --></body></html>"


class CleanupCounter:
    """Cleanup callback counting its calls."""

    def __init__(self):
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


class TestForwarderCompletion:
    """Test the successful streaming path."""

    @pytest.mark.asyncio
    async def test_end_to_end_document(self):
        """Head and body bytes land in the right places of the template."""
        engine = FakeEngine(
            chunks=lambda template: service_chunks(template, "<title>X</title>", ["<div>Y</div>"])
        )
        channel = RecordingChannel()
        session = await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.text == (
            "<html><head><title>X</title></head><body><div>Y</div></body></html>"
        )
        assert session.outcome is StreamOutcome.COMPLETED
        assert session.history == [
            StreamState.IDLE,
            StreamState.TEMPLATE_SPLIT,
            StreamState.INITIAL_SEGMENT_COMMITTED,
            StreamState.REMOTE_STREAM_ATTACHED,
            StreamState.COMPLETED,
            StreamState.CLOSED,
        ]
        assert channel.close_calls == 1

    @pytest.mark.asyncio
    async def test_initial_segment_written_first(self):
        """The initial segment precedes every relayed byte."""
        engine = FakeEngine(chunks=[b"a", b"b", b"c"])
        channel = RecordingChannel()
        await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.writes == [b"<html><head>", b"a", b"b", b"c"]

    @pytest.mark.asyncio
    async def test_remote_receives_uncommitted_remainder(self):
        """The remote side gets the template from the commit point on."""
        engine = FakeEngine(chunks=[b"x"])
        await StreamingForwarder(engine).forward("/p", {"k": 1}, TEMPLATE, RecordingChannel())

        assert engine.stream_calls == [
            ("/p", {"k": 1}, "<!-- SSR_HEAD --></head><body><!-- SSR_BODY --></body></html>")
        ]


class TestForwarderFallback:
    """Test recovery when the stream never starts."""

    @pytest.mark.asyncio
    async def test_not_started_writes_unmodified_tail(self):
        """A stream that never started closes out with the raw remainder."""
        engine = FakeEngine(outcome=StreamOutcome.NOT_STARTED)
        channel = RecordingChannel()
        session = await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.text == TEMPLATE
        assert session.state is StreamState.CLOSED
        assert session.history == [
            StreamState.IDLE,
            StreamState.TEMPLATE_SPLIT,
            StreamState.INITIAL_SEGMENT_COMMITTED,
            StreamState.TAIL_WRITTEN,
            StreamState.CLOSED,
        ]
        assert engine.render_calls == []
        assert channel.close_calls == 1

    @pytest.mark.asyncio
    async def test_completed_without_bytes_writes_tail(self):
        """An empty successful stream still yields a complete document."""
        engine = FakeEngine(chunks=[], outcome=StreamOutcome.COMPLETED)
        channel = RecordingChannel()
        await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.text == TEMPLATE

    @pytest.mark.asyncio
    async def test_unsupported_renders_buffered(self):
        """An engine that cannot stream renders buffered into the remainder."""
        engine = FakeEngine(
            streaming=False,
            result=RenderResult(head="<title>X</title>", body="<div>Y</div>", body_attrs='id="b"'),
        )
        channel = RecordingChannel()
        session = await StreamingForwarder(engine).forward("/p", {"k": 1}, TEMPLATE, channel)

        assert channel.text == (
            '<html><head><title>X</title></head><body id="b"><div>Y</div></body></html>'
        )
        assert engine.render_calls == [("/p", {"k": 1})]
        assert session.outcome is StreamOutcome.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_unsupported_without_result_writes_tail(self):
        """A failed buffered render leaves the fallback markup."""
        engine = FakeEngine(streaming=False, result=None)
        channel = RecordingChannel()
        await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.text == TEMPLATE


class TestForwarderAbort:
    """Test failures after the first byte."""

    @pytest.mark.asyncio
    async def test_aborted_closes_without_more_writes(self):
        """A mid-stream abort closes the channel and writes nothing else."""
        engine = FakeEngine(chunks=[b"<title>X</title>", b"<div>"], outcome=StreamOutcome.ABORTED)
        channel = RecordingChannel()
        session = await StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel)

        assert channel.writes == [b"<html><head>", b"<title>X</title>", b"<div>"]
        assert session.state is StreamState.CLOSED
        assert StreamState.ABORTED_MID_STREAM in session.history
        assert StreamState.TAIL_WRITTEN not in session.history
        assert channel.close_calls == 1
        assert session.bytes_relayed == len(b"<title>X</title><div>")

    @pytest.mark.asyncio
    async def test_client_disconnect_stops_relay(self):
        """A closed outbound channel ends the session without raising."""
        engine = FakeEngine(chunks=[b"a", b"b", b"c"])
        channel = RecordingChannel(fail_after=2)
        cleanup = CleanupCounter()
        session = await StreamingForwarder(engine).forward(
            "/p", {}, TEMPLATE, channel, cleanup=cleanup
        )

        assert channel.writes == [b"<html><head>", b"a"]
        assert StreamState.ABORTED_MID_STREAM in session.history
        assert engine.stream_finished is True
        assert cleanup.calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_releases_everything(self):
        """Cancelling the session stops the stream and still cleans up."""
        hold = asyncio.Event()
        engine = FakeEngine(chunks=[b"a", b"b"], hold=hold)
        channel = RecordingChannel()
        cleanup = CleanupCounter()

        task = asyncio.create_task(
            StreamingForwarder(engine).forward("/p", {}, TEMPLATE, channel, cleanup=cleanup)
        )
        await asyncio.sleep(0.05)
        assert channel.writes == [b"<html><head>", b"a"]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.stream_finished is True
        assert channel.close_calls == 1
        assert cleanup.calls == 1
        assert channel.writes == [b"<html><head>", b"a"]


class TestForwarderRejection:
    """Test template validation."""

    @pytest.mark.asyncio
    async def test_missing_body_marker_rejected_before_engine(self):
        """Templates without the body marker never reach the engine."""
        engine = FakeEngine(chunks=[b"x"])
        channel = RecordingChannel()
        cleanup = CleanupCounter()

        with pytest.raises(MissingMarkerError):
            await StreamingForwarder(engine).forward(
                "/p", {}, "<html><!-- SSR_HEAD --></html>", channel, cleanup=cleanup
            )

        assert engine.stream_calls == []
        assert channel.writes == []
        assert cleanup.calls == 1

    @pytest.mark.asyncio
    async def test_empty_template_rejected(self):
        """An empty template is rejected."""
        with pytest.raises(TemplateError):
            await StreamingForwarder(FakeEngine()).forward("/p", {}, "", RecordingChannel())


class TestForwarderCleanup:
    """Test cleanup semantics."""

    @pytest.mark.parametrize(
        "outcome",
        [StreamOutcome.COMPLETED, StreamOutcome.NOT_STARTED, StreamOutcome.ABORTED],
    )
    @pytest.mark.asyncio
    async def test_cleanup_runs_once(self, outcome):
        """Every terminal edge runs cleanup exactly once."""
        cleanup = CleanupCounter()
        await StreamingForwarder(FakeEngine(chunks=[b"x"], outcome=outcome)).forward(
            "/p", {}, TEMPLATE, RecordingChannel(), cleanup=cleanup
        )
        assert cleanup.calls == 1

    @pytest.mark.asyncio
    async def test_async_cleanup_awaited(self):
        """Async cleanup callbacks are awaited."""
        done = []

        async def cleanup() -> None:
            done.append(True)

        await StreamingForwarder(FakeEngine(chunks=[b"x"])).forward(
            "/p", {}, TEMPLATE, RecordingChannel(), cleanup=cleanup
        )
        assert done == [True]

    @pytest.mark.asyncio
    async def test_failing_cleanup_does_not_raise(self):
        """A failing cleanup is logged, not raised."""

        def cleanup() -> None:
            raise RuntimeError("cleanup bug")

        session = await StreamingForwarder(FakeEngine(chunks=[b"x"])).forward(
            "/p", {}, TEMPLATE, RecordingChannel(), cleanup=cleanup
        )
        assert session.state is StreamState.CLOSED


class TestQueueChannel:
    """Test the queue-backed outbound channel."""

    @pytest.mark.asyncio
    async def test_chunks_then_end(self):
        """Written chunks are iterated in order until close."""
        channel = QueueChannel()
        await channel.write(b"a")
        await channel.write(b"")
        await channel.write(b"b")
        await channel.close()

        assert [chunk async for chunk in channel.iter_chunks()] == [b"a", b"b"]
        assert channel.closed

    @pytest.mark.asyncio
    async def test_write_after_disconnect_raises(self):
        """Writes fail once the consumer is gone."""
        channel = QueueChannel()
        channel.disconnect()
        with pytest.raises(ChannelClosedError):
            await channel.write(b"a")
        await channel.close()
        assert channel.disconnected
