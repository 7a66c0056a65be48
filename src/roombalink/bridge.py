"""
roombalink.bridge — RoombaBridge: runs every configured robot.

``RoombaBridge`` is the primary entry point for host integrations. It owns
one :class:`~roombalink.worker.RobotWorker` per robot and a shared
:class:`~roombalink.dispatcher.EventDispatcher`; robots are fully
independent, so one robot rejecting its credentials does not stop the others.

Usage::

    configs = [RobotConfig(address="192.168.1.50", blid=BLID, password=PASSWORD)]
    async with RoombaBridge(configs) as bridge:
        bridge.subscribe(handle_event)
        await bridge.send_command(BLID, "start")
        await bridge.run()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .dispatcher import EventDispatcher
from .exceptions import AuthError, InvariantError
from .worker import RobotWorker

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable
    from types import TracebackType

    from .config import RobotConfig
    from .const import Command
    from .dispatcher import Consumer
    from .models import DeviceEvent

logger = logging.getLogger(__name__)


class RoombaBridge:
    """
    Runs one worker per configured robot.

    Args:
        configs:    One :class:`RobotConfig` per robot; BLIDs must be unique.
        dispatcher: Shared dispatcher; a default one is created when omitted.
    """

    def __init__(
        self,
        configs: Iterable[RobotConfig],
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        self.dispatcher = dispatcher or EventDispatcher()
        self.workers: dict[str, RobotWorker] = {}
        for config in configs:
            if config.blid in self.workers:
                raise ValueError(f"robot {config.blid} is configured more than once")
            self.workers[config.blid] = RobotWorker(config, self.dispatcher)
        self.failures: dict[str, BaseException] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RoombaBridge:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start every worker that is not already running."""
        for device_id, worker in self.workers.items():
            if device_id not in self._tasks:
                self._tasks[device_id] = asyncio.create_task(
                    self._run_worker(worker), name=f"roombalink-worker-{worker.name}"
                )

    async def run(self) -> None:
        """Run until every worker has stopped (see :meth:`stop`)."""
        self.start()
        await asyncio.gather(*self._tasks.values())

    async def stop(self) -> None:
        """Stop every worker and flush the dispatcher."""
        for worker in self.workers.values():
            await worker.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        await self.dispatcher.close()

    async def _run_worker(self, worker: RobotWorker) -> None:
        try:
            await worker.run()
        except AuthError as exc:
            self.failures[worker.device_id] = exc
            logger.error("%s stopped: %s", worker.name, exc)
        except InvariantError as exc:
            self.failures[worker.device_id] = exc
            logger.error("%s stopped after an internal error: %s", worker.name, exc)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def worker(self, device_id: str) -> RobotWorker:
        try:
            return self.workers[device_id]
        except KeyError:
            raise ValueError(f"unknown robot {device_id!r}") from None

    async def send_command(self, device_id: str, command: Command | str) -> None:
        """Send *command* to one robot (see :meth:`SessionManager.send_command`)."""
        await self.worker(device_id).send_command(command)

    def subscribe(self, consumer: Consumer) -> Callable[[], None]:
        return self.dispatcher.subscribe(consumer)

    def events(self) -> AsyncIterator[DeviceEvent]:
        return self.dispatcher.events()
