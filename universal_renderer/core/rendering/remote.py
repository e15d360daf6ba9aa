"""
Remote Streaming Engine
=======================

HTTP engine for an out-of-process rendering service. Non-streaming calls post
``{url, props}`` and parse one JSON payload; streaming calls post
``{url, props, template}`` and relay the chunked response body untouched.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError
from yarl import URL

from universal_renderer.config.logging import get_logger
from universal_renderer.config.settings import Settings
from universal_renderer.models.schemas import RenderResult, StreamOutcome
from .base import ChunkSink, RenderEngine

logger = get_logger(__name__)


class RemoteStreamingEngine(RenderEngine):
    """Engine that renders through a rendering service reachable over HTTP."""

    name = "streaming"

    def __init__(
        self,
        server_url: Optional[str] = None,
        *,
        timeout: float = 3.0,
        static_path: Optional[str] = None,
        stream_path: str = "/stream",
    ):
        self.server_url = server_url or None
        self.timeout = timeout
        self.static_path = static_path
        self.stream_path = stream_path
        self.logger: Any = logger.bind(component="remote_engine")  # structlog.BoundLoggerBase
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteStreamingEngine":
        return cls(
            settings.server_url,
            timeout=settings.timeout,
            static_path=settings.static_path,
            stream_path=settings.stream_path,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.server_url)

    @property
    def supports_streaming(self) -> bool:
        return True

    @property
    def static_url(self) -> str:
        base = URL(self.server_url or "")
        if self.static_path is None:
            return str(base)
        return str(base.join(URL(self.static_path)))

    @property
    def stream_url(self) -> str:
        return str(URL(self.server_url or "").join(URL(self.stream_path)))

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Per-call timeout: bounds connecting and each read, never the whole stream."""
        return aiohttp.ClientTimeout(total=None, connect=self.timeout, sock_read=self.timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def health_check(self) -> bool:
        """Check if the rendering service is healthy."""
        if not self.enabled:
            return False
        try:
            session = await self._get_session()
            health_url = str(URL(self.server_url).join(URL("/health")))
            async with session.get(health_url, timeout=self._timeout()) as response:
                if response.status == 200:
                    data = await response.json()
                    if not isinstance(data, dict):
                        self.logger.warning(
                            "Rendering service health check returned a non-object payload"
                        )
                        return False
                    self.logger.debug(
                        "Rendering service health check successful", status=data.get("status")
                    )
                    return True
                self.logger.warning(
                    "Rendering service health check failed",
                    status=response.status,
                    response=await response.text(),
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error("Rendering service health check error", error=str(e))
            return False

    async def render(self, url: str, props: Dict[str, Any]) -> Optional[RenderResult]:
        """
        Render a page with one blocking request to the rendering service.

        Returns:
            RenderResult on a 2xx response carrying a valid payload, otherwise None
        """
        if not self.enabled:
            self.logger.debug("SSR server URL is not configured, skipping render", url=url)
            return None

        target = self.static_url
        try:
            session = await self._get_session()
            async with session.post(
                target, json={"url": url, "props": props}, timeout=self._timeout()
            ) as response:
                if not 200 <= response.status < 300:
                    self.logger.error(
                        "SSR fetch request failed",
                        target=target,
                        status=response.status,
                        reason=response.reason,
                        url=url,
                    )
                    return None

                data = await response.json(content_type=None)
                result = RenderResult.model_validate(data)
                self.logger.debug("SSR fetch completed", target=target, url=url)
                return result

        except asyncio.TimeoutError as e:
            self.logger.error(
                "SSR fetch request timed out", target=target, url=url, error=type(e).__name__
            )
            return None
        except aiohttp.ClientError as e:
            self.logger.error(
                "SSR fetch request failed",
                target=target,
                url=url,
                error=f"{type(e).__name__} - {e}",
            )
            return None
        except (ValidationError, ValueError) as e:
            self.logger.error(
                "SSR fetch returned an invalid payload", target=target, url=url, error=str(e)
            )
            return None
        except TypeError as e:
            self.logger.error("SSR props are not JSON serializable", url=url, error=str(e))
            return None

    async def stream(
        self, url: str, props: Dict[str, Any], template: str, sink: ChunkSink
    ) -> StreamOutcome:
        """
        Relay a streamed render into ``sink``.

        Failures before the first relayed byte report ``NOT_STARTED`` so the
        caller may still fall back; failures after it report ``ABORTED``.
        Exceptions raised by ``sink`` propagate after the remote response
        has been released.
        """
        if not self.enabled:
            self.logger.warning("SSR server URL is not configured, falling back", url=url)
            return StreamOutcome.NOT_STARTED

        target = self.stream_url
        relayed = 0
        try:
            session = await self._get_session()
            payload = {"url": url, "props": props, "template": template}
            async with session.post(target, json=payload, timeout=self._timeout()) as response:
                if not 200 <= response.status < 300:
                    self.logger.error(
                        "SSR stream server responded with an error",
                        target=target,
                        status=response.status,
                        reason=response.reason,
                    )
                    return StreamOutcome.NOT_STARTED

                async for chunk in response.content.iter_any():
                    if not chunk:
                        continue
                    await sink(chunk)
                    relayed += len(chunk)

            self.logger.debug("SSR stream completed", target=target, url=url, bytes=relayed)
            return StreamOutcome.COMPLETED

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if relayed:
                self.logger.error(
                    "SSR stream aborted mid-stream",
                    target=target,
                    url=url,
                    bytes=relayed,
                    error=f"{type(e).__name__} - {e}",
                )
                return StreamOutcome.ABORTED

            self.logger.error(
                "SSR stream connection failed",
                target=target,
                url=url,
                error=f"{type(e).__name__} - {e}",
            )
            return StreamOutcome.NOT_STARTED
        except TypeError as e:
            self.logger.error("SSR props are not JSON serializable", url=url, error=str(e))
            return StreamOutcome.NOT_STARTED
