"""
Render Engine Interface
=======================

Capability contract shared by every engine. Engine boundaries never raise for
expected failures: non-streaming calls return ``None`` and streaming calls
return a :class:`StreamOutcome`.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from universal_renderer.config.logging import get_logger
from universal_renderer.models.schemas import RenderResult, StreamOutcome

logger = get_logger(__name__)

# Receives relayed bytes in arrival order.
ChunkSink = Callable[[bytes], Awaitable[None]]


class RenderEngineError(Exception):
    """Base exception for render engine failures."""

    pass


class RenderEngine(ABC):
    """Abstract render engine."""

    name = "base"

    @property
    def enabled(self) -> bool:
        """Whether the engine is configured to render at all."""
        return True

    @property
    def supports_streaming(self) -> bool:
        return False

    @abstractmethod
    async def render(self, url: str, props: Dict[str, Any]) -> Optional[RenderResult]:
        """
        Render a page in one piece.

        Args:
            url: URL of the page to render
            props: JSON-serializable props

        Returns:
            RenderResult, or None when rendering failed or is disabled
        """

    async def stream(
        self, url: str, props: Dict[str, Any], template: str, sink: ChunkSink
    ) -> StreamOutcome:
        """
        Render a page as a byte stream relayed into ``sink``.

        Engines without streaming report ``UNSUPPORTED`` and never touch the sink.
        """
        logger.warning(
            "Render engine does not support streaming", engine=self.name, url=url
        )
        return StreamOutcome.UNSUPPORTED

    async def start(self) -> None:
        """Acquire long-lived resources ahead of the first call."""

    async def close(self) -> None:
        """Release long-lived resources."""
