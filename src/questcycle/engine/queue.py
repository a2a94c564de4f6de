"""Single-writer persistence queue.

All reads and writes against the store go through one consumer task, in
strict submission order across every caller. Each operation gets its own
session and transaction; results and callbacks are handed back on the event
loop of whoever submitted the work, never run inside the consumer.
"""

import asyncio
import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questcycle.engine.errors import PersistenceError, QuestCycleError
from questcycle.observability.metrics import MetricsRegistry

logger = logging.getLogger("questcycle.queue")

T = TypeVar("T")
Operation = Callable[[AsyncSession], Awaitable[T]]
SuccessCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass
class _Job:
    name: str
    operation: Operation
    on_success: Optional[SuccessCallback]
    on_error: Optional[ErrorCallback]
    future: asyncio.Future
    caller_loop: asyncio.AbstractEventLoop
    submitted_at: float = field(default_factory=time.perf_counter)


class PersistenceQueue:
    """Bounded-wait, single-consumer executor for database operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        metrics: MetricsRegistry | None = None,
        max_size: int = 1000,
        submit_timeout: float = 5.0,
        slow_threshold_ms: float = 1000.0,
        shutdown_timeout: float = 10.0,
    ):
        self._session_factory = session_factory
        self._metrics = metrics or MetricsRegistry()
        self._max_size = max_size
        self._submit_timeout = submit_timeout
        self._slow_threshold_ms = slow_threshold_ms
        self._shutdown_timeout = shutdown_timeout
        self._queue: Optional[asyncio.Queue[_Job]] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._accepting = True
        self._worker = asyncio.create_task(self._consume(), name="questcycle-persistence")
        logger.info(f"Persistence queue started (max size {self._max_size})")

    async def submit(
        self,
        name: str,
        operation: Operation,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> Optional[asyncio.Future]:
        """Enqueue ``operation``; returns its future, or None if the job was dropped.

        Enqueue waits at most the submit timeout. A saturated or stopped queue
        drops the job with a warning.
        """
        caller_loop = asyncio.get_running_loop()
        future = caller_loop.create_future()
        job = _Job(name, operation, on_success, on_error, future, caller_loop)

        if not self._accepting or self._queue is None:
            logger.warning(f"Persistence queue not accepting work, dropped '{name}'")
            self._metrics.inc_counter("queue.dropped")
            return None

        try:
            await asyncio.wait_for(self._queue.put(job), timeout=self._submit_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Persistence queue saturated ({self._queue.qsize()} pending), "
                f"dropped '{name}' after {self._submit_timeout}s"
            )
            self._metrics.inc_counter("queue.dropped")
            return None

        self._metrics.set_gauge("queue.depth", self._queue.qsize())
        return future

    async def run(self, name: str, operation: Operation[T]) -> T:
        """Submit and wait for the result; a dropped job raises PersistenceError."""
        future = await self.submit(name, operation)
        if future is None:
            raise PersistenceError(name, "queue saturated or shut down")
        return await future

    def submit_threadsafe(self, name: str, operation: Operation[T]) -> concurrent.futures.Future:
        """Submit from a thread that is not running the queue's event loop."""
        if self._loop is None:
            raise PersistenceError(name, "queue not started")
        return asyncio.run_coroutine_threadsafe(self.run(name, operation), self._loop)

    async def shutdown(self) -> None:
        """Stop accepting, drain up to the shutdown timeout, then force-stop."""
        if self._queue is None:
            return
        self._accepting = False
        pending = self._queue.qsize()
        if pending:
            logger.info(f"Draining {pending} persistence operations before shutdown")
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Persistence queue did not drain within {self._shutdown_timeout}s, forcing stop"
            )

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        abandoned = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            self._complete(job, None, PersistenceError(job.name, "queue shut down"))
            abandoned += 1
        if abandoned:
            logger.error(f"Abandoned {abandoned} persistence operations at shutdown")

        self._worker = None
        self._queue = None
        logger.info("Persistence queue stopped")

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()
                self._metrics.set_gauge("queue.depth", self._queue.qsize())

    async def _execute(self, job: _Job) -> None:
        start = time.perf_counter()
        result: Any = None
        error: Optional[BaseException] = None
        try:
            async with self._session_factory() as session:
                try:
                    result = await job.operation(session)
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    raise
        except asyncio.CancelledError:
            self._complete(job, None, PersistenceError(job.name, "cancelled at shutdown"))
            raise
        except QuestCycleError as exc:
            logger.info(f"Persistence operation '{job.name}' rejected: {exc.code} {exc.message}")
            error = exc
        except SQLAlchemyError as exc:
            logger.error(f"Persistence operation '{job.name}' failed: {exc}", exc_info=True)
            error = PersistenceError(job.name, type(exc).__name__)
        except Exception as exc:
            logger.error(f"Persistence operation '{job.name}' raised: {exc}", exc_info=True)
            error = exc

        duration_ms = (time.perf_counter() - start) * 1000.0
        waited_ms = (start - job.submitted_at) * 1000.0
        self._metrics.observe("queue.operation_ms", duration_ms)
        self._metrics.observe("queue.wait_ms", waited_ms)
        self._metrics.inc_counter("queue.failed" if error else "queue.succeeded")
        if duration_ms > self._slow_threshold_ms:
            logger.warning(f"Slow persistence operation '{job.name}': {duration_ms:.0f}ms")

        self._complete(job, result, error)

    def _complete(self, job: _Job, result: Any, error: Optional[BaseException]) -> None:
        if job.caller_loop.is_closed():
            logger.warning(f"Caller loop closed before '{job.name}' completed")
            return
        job.caller_loop.call_soon_threadsafe(self._deliver, job, result, error)

    @staticmethod
    def _deliver(job: _Job, result: Any, error: Optional[BaseException]) -> None:
        """Runs on the caller's loop: resolve the future, then fire callbacks."""
        if not job.future.done():
            if error is None:
                job.future.set_result(result)
            else:
                job.future.set_exception(error)
                if job.on_error is not None:
                    # The error callback owns the failure.
                    job.future.exception()

        callback_name = "on_error" if error is not None else "on_success"
        callback = job.on_error if error is not None else job.on_success
        if callback is None:
            return
        try:
            callback(error if error is not None else result)
        except Exception as exc:
            logger.error(
                f"{callback_name} callback for '{job.name}' raised: {exc}", exc_info=True
            )
