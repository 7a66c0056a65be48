"""
roombalink.dispatcher — Fan-out of canonical events to consumers.

:meth:`EventDispatcher.publish` never blocks the device worker: each
consumer has its own bounded buffer and its own delivery task, so a slow
consumer only delays itself.

Overflow policy: when a buffer is full the oldest buffered
:class:`~roombalink.models.TelemetrySample` is dropped (the newer sample
supersedes it). Mission phase changes and map artifacts are never dropped.

Delivery is at-least-once: a consumer that raises is retried up to
``max_attempts`` times. Consumers can discard repeats by
:attr:`DeviceEvent.sequence <roombalink.models.DeviceEvent.sequence>`.
"""

from __future__ import annotations

import asyncio
from collections import deque
import contextlib
import inspect
import logging
from typing import TYPE_CHECKING, Any

from .models import CanonicalEvent, DeviceEvent, TelemetrySample

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    Consumer = Callable[[DeviceEvent], Awaitable[Any] | Any]

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 256
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.1


class _Subscription:
    """Buffer and wake-up signal of one consumer."""

    def __init__(self, consumer: Consumer | None, max_size: int) -> None:
        self.consumer = consumer
        self.max_size = max_size
        self.buffer: deque[DeviceEvent] = deque()
        self.wake = asyncio.Event()
        self.idle = asyncio.Event()
        self.idle.set()
        self.task: asyncio.Task[None] | None = None
        self.closed = False
        self.dropped = 0
        self.failed = 0

    def offer(self, event: DeviceEvent) -> None:
        if len(self.buffer) >= self.max_size:
            victim = next((e for e in self.buffer if e.is_telemetry), None)
            if victim is not None:
                self.buffer.remove(victim)
                self.dropped += 1
                logger.warning(
                    "Consumer %s is behind; dropped telemetry #%d of %s",
                    self.name,
                    victim.sequence,
                    victim.device_id,
                )
        self.buffer.append(event)
        self.idle.clear()
        self.wake.set()

    @property
    def name(self) -> str:
        if self.consumer is None:
            return "events()"
        return getattr(self.consumer, "__qualname__", repr(self.consumer))


class EventDispatcher:
    """
    Delivers :class:`~roombalink.models.DeviceEvent` envelopes to subscribers.

    Consumers are plain callables or coroutine functions taking one
    :class:`DeviceEvent`. :meth:`subscribe` must be called from a running
    event loop.

    Example::

        dispatcher = EventDispatcher()
        dispatcher.subscribe(print)
        dispatcher.publish("robot-1", sample)
        await dispatcher.close()

    Args:
        buffer_size:  Per-consumer buffer bound.
        max_attempts: Delivery attempts per event before it is abandoned.
        retry_delay:  Seconds between attempts.
    """

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        if buffer_size < 1 or max_attempts < 1:
            raise ValueError("buffer_size and max_attempts must be at least 1")
        self._buffer_size = buffer_size
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._subscriptions: dict[Any, _Subscription] = {}
        self._sequences: dict[str, int] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, consumer: Consumer) -> Callable[[], None]:
        """Register *consumer*; returns a callable that unsubscribes it."""
        if self._closed:
            raise RuntimeError("dispatcher is closed")
        if consumer in self._subscriptions:
            return lambda: self.unsubscribe(consumer)
        sub = _Subscription(consumer, self._buffer_size)
        sub.task = asyncio.get_running_loop().create_task(self._deliver_loop(sub))
        self._subscriptions[consumer] = sub
        logger.debug("Subscribed %s", sub.name)
        return lambda: self.unsubscribe(consumer)

    def unsubscribe(self, consumer: Consumer) -> None:
        """Stop delivering to *consumer*; pending events for it are dropped."""
        sub = self._subscriptions.pop(consumer, None)
        if sub is None:
            return
        sub.closed = True
        if sub.task is not None:
            sub.task.cancel()
        logger.debug("Unsubscribed %s", sub.name)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, device_id: str, event: CanonicalEvent) -> DeviceEvent:
        """Wrap *event* in a sequenced envelope and queue it for every consumer."""
        if self._closed:
            raise RuntimeError("dispatcher is closed")
        sequence = self._sequences.get(device_id, 0) + 1
        self._sequences[device_id] = sequence
        envelope = DeviceEvent(device_id=device_id, sequence=sequence, event=event)
        for sub in list(self._subscriptions.values()):
            sub.offer(envelope)
        if not isinstance(event, TelemetrySample):
            logger.debug("Published %s #%d for %s", type(event).__name__, sequence, device_id)
        return envelope

    async def events(self, buffer_size: int | None = None) -> AsyncIterator[DeviceEvent]:
        """
        Iterate over every event published after the first ``__anext__``.

        Same overflow policy as callback consumers. Ends when the dispatcher
        is closed.
        """
        sub = _Subscription(None, buffer_size or self._buffer_size)
        self._subscriptions[sub] = sub
        try:
            while True:
                while not sub.buffer:
                    if sub.closed or self._closed:
                        return
                    sub.wake.clear()
                    await sub.wake.wait()
                yield sub.buffer.popleft()
                if not sub.buffer:
                    sub.idle.set()
        finally:
            self._subscriptions.pop(sub, None)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver_loop(self, sub: _Subscription) -> None:
        while not sub.closed:
            if not sub.buffer:
                sub.idle.set()
                sub.wake.clear()
                await sub.wake.wait()
                continue
            await self._deliver(sub, sub.buffer.popleft())

    async def _deliver(self, sub: _Subscription, event: DeviceEvent) -> None:
        assert sub.consumer is not None
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = sub.consumer(event)
                if inspect.isawaitable(result):
                    await result
                return
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Consumer %s failed on %s #%d (attempt %d/%d): %s",
                    sub.name,
                    event.device_id,
                    event.sequence,
                    attempt,
                    self._max_attempts,
                    exc,
                )
            if attempt < self._max_attempts and self._retry_delay > 0:
                await asyncio.sleep(self._retry_delay)
        sub.failed += 1
        logger.error(
            "Consumer %s gave up on %s #%d after %d attempts",
            sub.name,
            event.device_id,
            event.sequence,
            self._max_attempts,
        )

    async def drain(self) -> None:
        """Wait until every callback consumer has processed its buffer."""
        for sub in list(self._subscriptions.values()):
            if sub.consumer is not None:
                await sub.idle.wait()

    async def close(self, timeout: float = 5.0) -> None:
        """Flush buffered events (up to *timeout* seconds) and stop all consumers."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self.drain(), timeout=timeout)
        subs = list(self._subscriptions.values())
        self._subscriptions.clear()
        tasks = []
        for sub in subs:
            sub.closed = True
            sub.wake.set()
            if sub.task is not None:
                sub.task.cancel()
                tasks.append(sub.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
