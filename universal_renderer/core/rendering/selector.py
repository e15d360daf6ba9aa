"""
Engine Selector
===============

Resolves the configured engine name to one cached engine instance. The cache
exists so the process pool is built once per process; ``reset()`` closes the
cached engine and forces reconstruction on the next lookup.
"""

from typing import Dict, Optional, Type

from universal_renderer.config.logging import get_logger
from universal_renderer.config.settings import Settings, get_settings
from universal_renderer.models.schemas import EngineKind
from .base import RenderEngine
from .process_pool import ProcessPoolEngine
from .remote import RemoteStreamingEngine

logger = get_logger(__name__)


class EngineSelector:
    """Factory and cache for the configured render engine."""

    _engines: Dict[str, Type[RenderEngine]] = {
        EngineKind.STREAMING.value: RemoteStreamingEngine,
        EngineKind.PROCESS_POOL.value: ProcessPoolEngine,
    }

    _aliases = {
        "http": EngineKind.STREAMING.value,
        "remote": EngineKind.STREAMING.value,
        "bun_io": EngineKind.PROCESS_POOL.value,
        "stdio": EngineKind.PROCESS_POOL.value,
        "process_pool": EngineKind.PROCESS_POOL.value,
    }

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings
        self._engine: Optional[RenderEngine] = None

    @classmethod
    def resolve_kind(cls, name: Optional[str]) -> str:
        """
        Map a configured engine name to a known engine kind.

        Unknown names degrade to the streaming engine with a warning.
        """
        key = (name or "").strip().lower()
        key = cls._aliases.get(key, key)
        if key not in cls._engines:
            logger.warning(
                "Unknown SSR engine, falling back to streaming",
                engine=name,
                known=sorted(cls._engines),
            )
            key = EngineKind.STREAMING.value
        return key

    def create_engine(self) -> RenderEngine:
        """Build a fresh engine instance from settings."""
        settings = self.settings or get_settings()
        kind = self.resolve_kind(settings.engine)
        engine = self._engines[kind].from_settings(settings)  # type: ignore[attr-defined]
        logger.info("Render engine created", engine=kind)
        return engine

    def get_engine(self) -> RenderEngine:
        """Return the cached engine, building it on first use."""
        if self._engine is None:
            self._engine = self.create_engine()
        return self._engine

    async def reset(self) -> None:
        """Close the cached engine and drop it."""
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.close()
            logger.info("Render engine reset", engine=engine.name)


# Global selector instance
_default_selector: Optional[EngineSelector] = None


def get_engine_selector() -> EngineSelector:
    """Get the process-wide selector."""
    global _default_selector
    if _default_selector is None:
        _default_selector = EngineSelector()
    return _default_selector


def get_render_engine() -> RenderEngine:
    """Get the process-wide render engine."""
    return get_engine_selector().get_engine()


async def reset_render_engine() -> None:
    """Close the process-wide engine and forget the selector's settings."""
    global _default_selector
    if _default_selector is not None:
        await _default_selector.reset()
        _default_selector = None
