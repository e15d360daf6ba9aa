"""
Persistent-Process Engine
=========================

Non-streaming engine backed by a bounded pool of long-lived worker processes.
Each worker speaks newline-delimited JSON over stdin/stdout: one
``{url, props}`` line in, one ``{head, body, bodyAttrs}`` or ``{error}`` line
out. The protocol carries no request IDs, so a worker serves exactly one
request at a time.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from universal_renderer.config.logging import get_logger
from universal_renderer.config.settings import Settings
from universal_renderer.models.schemas import RenderResult
from .base import RenderEngine, RenderEngineError

logger = get_logger(__name__)

DEFAULT_MAX_LINE_BYTES = 16 * 1024 * 1024


class WorkerError(RenderEngineError):
    """Exception raised when a worker process fails to answer a request."""

    pass


class ProcessPoolError(RenderEngineError):
    """Exception raised when the process pool cannot serve a checkout."""

    pass


class PoolExhaustedError(ProcessPoolError):
    """Exception raised when no worker becomes free within the checkout timeout."""

    pass


class WorkerProcess:
    """A long-lived render worker attached through its stdio pipes."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        read_timeout: float = 5.0,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = list(command)
        self.read_timeout = read_timeout
        self.max_line_bytes = max_line_bytes
        self.env = env
        self.cwd = cwd
        self.broken = False
        self.renders = 0
        self.logger: Any = logger.bind(component="worker_process")  # structlog.BoundLoggerBase
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def alive(self) -> bool:
        """Whether the process is running and its channel is still in sync."""
        return self._process is not None and self._process.returncode is None and not self.broken

    async def start(self) -> None:
        """Spawn the worker process."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.max_line_bytes,
                env=self.env,
                cwd=self.cwd,
            )
        except OSError as e:
            raise WorkerError(f"Failed to start worker process {self.command!r}: {e}") from e

        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self.logger.info("Worker process started", pid=self.pid, command=self.command)

    async def _drain_stderr(self) -> None:
        """Forward the worker's stderr into the host log so the pipe never fills."""
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                # Oversized line; the reader has already discarded it.
                continue
            if not line:
                break
            self.logger.info(
                "Worker stderr", pid=self.pid, line=line.decode("utf-8", errors="replace").rstrip()
            )

    async def render(self, url: str, props: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one request line and read one response line.

        Returns:
            The decoded response object

        Raises:
            WorkerError: If the worker is dead, times out or answers with garbage.
                The worker is marked broken in every such case.
        """
        payload = json.dumps({"url": url, "props": props}) + "\n"

        async with self._lock:
            if not self.alive:
                raise WorkerError(f"Worker process {self.pid} is not running")
            assert self._process is not None
            stdin, stdout = self._process.stdin, self._process.stdout
            assert stdin is not None and stdout is not None

            try:
                stdin.write(payload.encode("utf-8"))
                await stdin.drain()
                raw = await asyncio.wait_for(stdout.readline(), timeout=self.read_timeout)
            except asyncio.CancelledError:
                # an unread reply would answer the next request
                self.broken = True
                raise
            except asyncio.TimeoutError:
                self.broken = True
                raise WorkerError(
                    f"Worker process {self.pid} did not answer within {self.read_timeout}s"
                )
            except (BrokenPipeError, ConnectionResetError) as e:
                self.broken = True
                raise WorkerError(f"Worker process {self.pid} channel closed: {e}") from e
            except ValueError as e:
                self.broken = True
                raise WorkerError(f"Worker process {self.pid} response too large: {e}") from e

            if not raw:
                self.broken = True
                raise WorkerError(f"Worker process {self.pid} closed its output channel")

            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                self.broken = True
                raise WorkerError(f"Worker process {self.pid} sent invalid JSON: {e}") from e

            if not isinstance(data, dict):
                self.broken = True
                raise WorkerError(f"Worker process {self.pid} sent a non-object response")

            self.renders += 1
            return data

    async def close(self, grace: float = 2.0) -> None:
        """Terminate the worker process."""
        process = self._process
        if process is None:
            return

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    self.logger.warning("Worker process ignored SIGTERM, killing", pid=self.pid)
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                pass

        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=grace)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()
            self._stderr_task = None

        self.logger.info("Worker process stopped", pid=self.pid, returncode=process.returncode)


WorkerFactory = Callable[[], Awaitable[WorkerProcess]]


class ProcessPool:
    """Bounded pool of worker processes with exclusive checkouts."""

    def __init__(
        self,
        command: Sequence[str],
        pool_size: int = 5,
        *,
        checkout_timeout: float = 5.0,
        read_timeout: float = 5.0,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        worker_factory: Optional[WorkerFactory] = None,
    ):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.command = list(command)
        self.pool_size = pool_size
        self.checkout_timeout = checkout_timeout
        self.read_timeout = read_timeout
        self.max_line_bytes = max_line_bytes
        self.workers: List[WorkerProcess] = []
        self.in_use = 0
        self.closed = False
        self._semaphore = asyncio.Semaphore(pool_size)
        self._worker_factory = worker_factory or self._spawn_worker
        self.logger: Any = logger.bind(component="process_pool")  # structlog.BoundLoggerBase

    async def _spawn_worker(self) -> WorkerProcess:
        worker = WorkerProcess(
            self.command, read_timeout=self.read_timeout, max_line_bytes=self.max_line_bytes
        )
        await worker.start()
        return worker

    async def initialize(self) -> None:
        """Warm the pool up with ``pool_size`` workers."""
        if self.closed:
            raise ProcessPoolError("Process pool is closed")

        try:
            while len(self.workers) < self.pool_size:
                worker = await self._worker_factory()
                if self.closed:
                    await worker.close()
                    raise ProcessPoolError("Process pool closed during initialization")
                self.workers.append(worker)
        except WorkerError as e:
            self.logger.error("Failed to initialize process pool", error=str(e))
            await self.close()
            raise ProcessPoolError(f"Process pool initialization failed: {e}") from e

        self.logger.info("Process pool initialized", pool_size=self.pool_size)

    async def close(self) -> None:
        """Terminate every idle worker and refuse further checkouts."""
        self.closed = True
        workers, self.workers = self.workers, []
        for worker in workers:
            await worker.close()
        self.logger.info("Process pool closed")

    def stats(self) -> Dict[str, int]:
        return {"size": self.pool_size, "idle": len(self.workers), "in_use": self.in_use}

    async def _take_worker(self) -> WorkerProcess:
        while self.workers:
            worker = self.workers.pop()
            if worker.alive:
                return worker
            self.logger.warning(
                "Discarding dead worker process", pid=worker.pid, returncode=worker.returncode
            )
            await worker.close()

        self.logger.info("Spawning replacement worker process")
        try:
            return await self._worker_factory()
        except WorkerError as e:
            raise ProcessPoolError(f"Worker spawn failed: {e}") from e

    async def _release_worker(self, worker: WorkerProcess) -> None:
        if worker.alive and not self.closed:
            self.workers.append(worker)
            return
        await worker.close()

    @asynccontextmanager
    async def checkout(self) -> AsyncGenerator[WorkerProcess, None]:
        """
        Check a worker out exclusively for one request.

        Raises:
            PoolExhaustedError: If no worker frees up within ``checkout_timeout``
            ProcessPoolError: If the pool is closed or a replacement cannot spawn
        """
        if self.closed:
            raise ProcessPoolError("Process pool is closed")

        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self.checkout_timeout)
        except asyncio.TimeoutError:
            raise PoolExhaustedError(
                f"Process pool exhausted: no worker available within {self.checkout_timeout}s"
            )

        worker: Optional[WorkerProcess] = None
        try:
            worker = await self._take_worker()
            self.in_use += 1
            try:
                yield worker
            finally:
                self.in_use -= 1
        finally:
            try:
                if worker is not None:
                    await self._release_worker(worker)
            finally:
                self._semaphore.release()


class ProcessPoolEngine(RenderEngine):
    """Engine rendering through pooled stdio worker processes. Never streams."""

    name = "process-pool"

    def __init__(self, pool: ProcessPool):
        self.pool = pool
        self.logger: Any = logger.bind(component="process_pool_engine")  # structlog.BoundLoggerBase
        self._ready = False
        self._failed = False
        self._closed = False
        self._start_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProcessPoolEngine":
        return cls(
            ProcessPool(
                settings.process_command,
                settings.process_pool_size,
                checkout_timeout=settings.process_checkout_timeout,
                read_timeout=settings.process_read_timeout,
                max_line_bytes=settings.process_max_line_bytes,
            )
        )

    @property
    def enabled(self) -> bool:
        return not (self._failed or self._closed)

    async def start(self) -> None:
        """Warm the pool up; a failure disables the engine."""
        async with self._start_lock:
            if self._ready or self._failed or self._closed:
                return
            try:
                await self.pool.initialize()
            except ProcessPoolError as e:
                self._failed = True
                self.logger.error("Process pool unavailable, SSR disabled", error=str(e))
                return
            self._ready = True

    async def close(self) -> None:
        """Terminate the pool; the engine renders nothing afterwards."""
        self._closed = True
        self._ready = False
        await self.pool.close()

    async def render(self, url: str, props: Dict[str, Any]) -> Optional[RenderResult]:
        if self._closed:
            self.logger.warning("Render requested after engine close", url=url)
            return None
        if not self._ready:
            await self.start()
        if not self._ready:
            return None

        try:
            async with self.pool.checkout() as worker:
                self.logger.info(
                    "Rendering via worker process", url=url, pid=worker.pid, props_keys=list(props)
                )
                data = await worker.render(url, props)
        except PoolExhaustedError as e:
            self.logger.warning("Process pool exhausted", url=url, error=str(e))
            return None
        except (WorkerError, ProcessPoolError) as e:
            self.logger.error("Worker process render failed", url=url, error=str(e))
            return None
        except TypeError as e:
            self.logger.error("SSR props are not JSON serializable", url=url, error=str(e))
            return None

        if data.get("error"):
            self.logger.error("Worker process reported a render error", url=url, error=data["error"])
            return None

        try:
            return RenderResult.model_validate(data)
        except ValidationError as e:
            self.logger.error("Worker process returned an invalid payload", url=url, error=str(e))
            return None
