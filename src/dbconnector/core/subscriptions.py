"""Uniform change notification: subscription handles, polling and streams."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import ConnectorError
from ..utils.logging import get_logger

logger = get_logger(__name__)

SnapshotCallback = Callable[[Optional[List[Dict[str, Any]]], Optional[ConnectorError]], None]


class Subscription:
    """Handle for one ``on_snapshot`` registration.

    Calling the handle (or ``close()``) stops delivery. Closing is idempotent
    and no callback runs after it returns.
    """

    def __init__(self, provider: str, path: str, callback: SnapshotCallback):
        self.provider = provider
        self.path = path
        self._callback = callback
        self._teardown: Optional[Callable[[], None]] = None
        self._closed = False
        self.last_snapshot: Optional[List[Dict[str, Any]]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, teardown: Callable[[], None]) -> None:
        """Attach the native release action (remove listener, channel or timer)."""
        self._teardown = teardown

    def deliver(self, data: Optional[List[Dict[str, Any]]], error: Optional[ConnectorError] = None) -> None:
        if self._closed:
            return

        if error is None:
            self.last_snapshot = data

        try:
            self._callback(data, error)
        except Exception as e:
            logger.error(
                "Snapshot callback raised",
                provider=self.provider,
                path=self.path,
                error=str(e)
            )

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self.last_snapshot = None
        teardown, self._teardown = self._teardown, None

        if teardown is not None:
            try:
                teardown()
            except Exception as e:
                logger.warning(
                    "Subscription teardown failed",
                    provider=self.provider,
                    path=self.path,
                    error=str(e)
                )

        logger.debug("Subscription closed", provider=self.provider, path=self.path)

    __call__ = close


class PollingTask:
    """Cancellable repeating task that turns a read into a push feed.

    The first tick runs immediately. A tick never starts before the previous
    one has finished, and a failed tick does not stop the task; only
    ``cancel()`` does.
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any, Optional[BaseException]], None],
        interval: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: Optional[str] = None
    ):
        self.poll = poll
        self.on_result = on_result
        self.interval = interval
        self._sleep = sleep
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "PollingTask":
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        while not self._cancelled:
            await self._tick()
            if self._cancelled:
                break
            await self._sleep(self.interval)

    async def _tick(self) -> None:
        self.ticks += 1
        try:
            result = await self.poll()
        except Exception as e:
            if not self._cancelled:
                self.on_result(None, e)
            return

        if not self._cancelled:
            self.on_result(result, None)


@dataclass(frozen=True)
class SnapshotResult:
    """One delivery from a subscription: data or an error, never both."""

    data: Optional[List[Dict[str, Any]]]
    error: Optional[ConnectorError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


_STREAM_CLOSED = object()


class SnapshotStream:
    """Async iterator view over a subscription.

    Errors arrive as ``SnapshotResult`` items and do not end the stream;
    iteration stops after ``close()``. Every item is a full snapshot, so a
    consumer that falls behind by more than ``max_pending`` items loses the
    oldest ones.

        async with db.snapshots("companies") as stream:
            async for result in stream:
                ...
    """

    def __init__(self, subscribe: Callable[[SnapshotCallback], Subscription], max_pending: int = 16):
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.dropped = 0
        self._subscription = subscribe(self._push)

    @property
    def closed(self) -> bool:
        return self._subscription.closed

    def _put(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug("Snapshot stream full; dropped oldest item", dropped=self.dropped)
        self._queue.put_nowait(item)

    def _push(self, data, error) -> None:
        self._put(SnapshotResult(data, error))

    def close(self) -> None:
        if self._subscription.closed:
            return
        self._subscription.close()
        self._put(_STREAM_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SnapshotResult:
        item = await self._queue.get()
        if item is _STREAM_CLOSED:
            self._queue.put_nowait(_STREAM_CLOSED)
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
