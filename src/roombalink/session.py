"""
roombalink.session — Connection state machine for one robot.

:class:`SessionManager` keeps exactly one logical connection to the robot,
independent of transient network failures::

    Disconnected ─connect─▶ Connecting ─socket up─▶ Authenticating ─CONNACK─▶ Connected
    Connected ─transport error / liveness timeout─▶ Backoff ─delay─▶ Connecting
    any ─auth failure─▶ Disconnected (terminal until reconfigured)

Inbound frames are never processed inline: :meth:`SessionManager.on_event`
stamps them and puts them on a bounded queue that the device worker drains
in order (see :meth:`SessionManager.events`).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import time
from typing import TYPE_CHECKING

from ._codec import encode_command
from .const import TOPIC_CMD, Command, topic_kind
from .exceptions import AuthError, NotConnectedError, RoombaError, TransportError
from .models import ConnectionState, RawEvent, RobotSession
from .mqtt import MqttTransport

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from typing import TypeVar

    from .config import RobotConfig

    _T = TypeVar("_T")

logger = logging.getLogger(__name__)


class Backoff:
    """
    Exponential reconnect delay with a ceiling.

    Delays double from ``base`` up to ``ceiling``. With ``jitter == 0`` the
    sequence never decreases; ``jitter`` adds up to that fraction on top of
    each delay (still capped at ``ceiling``).
    """

    def __init__(
        self,
        base: float,
        ceiling: float,
        jitter: float = 0.0,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.base = base
        self.ceiling = ceiling
        self.jitter = jitter
        self._rng = rng
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    def next_delay(self) -> float:
        delay = min(self.ceiling, self.base * 2 ** min(self._attempts, 32))
        self._attempts += 1
        if self.jitter:
            delay = min(self.ceiling, delay * (1.0 + self.jitter * self._rng()))
        return delay

    def reset(self) -> None:
        self._attempts = 0


class SessionManager:
    """
    Owns the transport connection to one robot.

    Example::

        manager = SessionManager(config)
        runner = asyncio.create_task(manager.run())
        async for raw in manager.events():
            ...
        await manager.stop()

    Args:
        config:            Robot configuration.
        transport_factory: Builds the transport; defaults to :class:`MqttTransport`.
        clock:             Monotonic clock used for liveness bookkeeping.
    """

    def __init__(
        self,
        config: RobotConfig,
        transport_factory: Callable[..., MqttTransport] = MqttTransport,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._clock = clock
        self.session = RobotSession(
            address=config.address,
            blid=config.blid,
            password=config.password,
        )
        self.backoff = Backoff(
            config.backoff_base,
            config.backoff_ceiling,
            config.backoff_jitter,
        )
        self._queue: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=config.queue_size)
        # Guards the connection handle: connect/close vs. command sends.
        self._lock = asyncio.Lock()
        self._transport: MqttTransport | None = None
        self._stop = asyncio.Event()
        self._wake = asyncio.Event()
        self._lost_reason: RoombaError | None = None
        self.dropped_events = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._config.display_name

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def is_connected(self) -> bool:
        return self.session.state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        previous = self.session.state
        if previous is state:
            return
        self.session.state = state
        logger.info("%s: connection %s → %s", self.name, previous, state)

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Make one connection attempt.

        Raises:
            AuthError:      Credentials rejected; session is terminally ``Disconnected``.
            TransportError: Network failure; session is in ``Backoff``.
        """
        if self.session.auth_failed:
            raise AuthError(f"{self.name}: credentials were rejected; reconfigure to retry")
        async with self._lock:
            await self._close_transport()
            self._lost_reason = None
            self._wake.clear()
            self._set_state(ConnectionState.CONNECTING)
            transport = self._transport_factory(
                address=self._config.address,
                blid=self._config.blid,
                password=self._config.password,
                port=self._config.port,
                connect_timeout=self._config.connect_timeout,
                on_frame=self.on_event,
                on_lost=self._on_lost,
            )
            self._transport = transport
            try:
                await transport.open()
                self._set_state(ConnectionState.AUTHENTICATING)
                await transport.handshake()
            except AuthError:
                self.session.auth_failed = True
                await self._close_transport()
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except TransportError:
                self.session.retry_count += 1
                await self._close_transport()
                self._set_state(ConnectionState.BACKOFF)
                raise
            except BaseException:
                await self._close_transport()
                self._set_state(ConnectionState.DISCONNECTED)
                raise

            self.session.retry_count = 0
            self.session.last_seen = self._clock()
            self.backoff.reset()
            self._set_state(ConnectionState.CONNECTED)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s: error closing transport: %s", self.name, exc)

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Keep the robot connected until :meth:`stop` is called.

        Transport errors and liveness timeouts are retried forever with
        exponential backoff.

        Raises:
            AuthError: The robot rejected the credentials (not retried).
        """
        try:
            while not self._stop.is_set():
                try:
                    completed = await self._until_stopped(self.connect())
                except TransportError as exc:
                    logger.warning("%s: connect failed: %s", self.name, exc)
                    await self._backoff_wait()
                    continue
                except AuthError as exc:
                    logger.error("%s: %s", self.name, exc)
                    raise
                if not completed:
                    break

                reason = await self._supervise()
                if reason is None:
                    break
                logger.warning("%s: %s", self.name, reason)
                self.session.retry_count += 1
                async with self._lock:
                    await self._close_transport()
                    self._set_state(ConnectionState.BACKOFF)
                await self._backoff_wait()
        finally:
            await self._close_transport()
            self._set_state(ConnectionState.DISCONNECTED)

    async def _until_stopped(self, coro: Awaitable[_T]) -> bool:
        """Await *coro* unless :meth:`stop` fires first; return False if stopped."""
        task = asyncio.ensure_future(coro)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
        if task.done():
            task.result()
            return True
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return False

    async def _supervise(self) -> RoombaError | None:
        """
        Wait while connected.

        Returns the reason the connection must be rebuilt, or ``None`` when
        :meth:`stop` was called.
        """
        while not self._stop.is_set():
            if self._lost_reason is not None:
                return self._lost_reason
            last_seen = self.session.last_seen or self._clock()
            remaining = self._config.liveness_timeout - (self._clock() - last_seen)
            if remaining <= 0:
                return TransportError(
                    f"no frame received for {self._config.liveness_timeout:.0f}s, reconnecting"
                )
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
        return None

    async def _backoff_wait(self) -> None:
        if self._stop.is_set():
            return
        delay = self.backoff.next_delay()
        logger.info(
            "%s: reconnecting in %.1fs (attempt %d)",
            self.name,
            delay,
            self.session.retry_count,
        )
        await self._sleep(delay)

    async def _sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds; returns early on :meth:`stop`."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=delay)

    def _on_lost(self, error: RoombaError) -> None:
        self._lost_reason = error
        self._wake.set()

    async def stop(self) -> None:
        """Abort connect/backoff waits and close the transport."""
        self._stop.set()
        self._wake.set()
        if self._lock.locked():
            # The connection loop owns the handle; it closes it on exit.
            return
        await self._close_transport()
        self._set_state(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(self, command: Command | str) -> None:
        """
        Publish one control command.

        Raises:
            ValueError:        Unknown command name.
            NotConnectedError: Session is not ``Connected`` (state unchanged).
            TransportError:    The publish failed; the connection is rebuilt.
        """
        cmd = Command(command)
        if not self.is_connected:
            raise NotConnectedError(f"{self.name}: cannot send {cmd!s} while {self.state}")
        async with self._lock:
            transport = self._transport
            if not self.is_connected or transport is None:
                raise NotConnectedError(f"{self.name}: cannot send {cmd!s} while {self.state}")
            try:
                await transport.publish(TOPIC_CMD, encode_command(cmd.value))
            except TransportError as exc:
                self._on_lost(exc)
                raise
        logger.info("%s: sent command %s", self.name, cmd)

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    def on_event(self, topic: str, payload: bytes) -> None:
        """
        Transport callback for every inbound frame; never blocks.

        When the queue is full the oldest frame is dropped so a stalled
        consumer cannot hold back the newest device state.
        """
        now = self._clock()
        self.session.last_seen = now
        event = RawEvent(kind=topic_kind(topic), topic=topic, payload=payload, received_at=now)
        if self._queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self.dropped_events += 1
                logger.warning("%s: event queue full, dropped oldest frame", self.name)
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[RawEvent]:
        """Yield queued frames in arrival order, forever."""
        while True:
            yield await self._queue.get()
