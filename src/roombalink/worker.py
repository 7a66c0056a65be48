"""
roombalink.worker — RobotWorker: the per-device processing pipeline.

One worker per configured robot. It runs the session's connection loop and,
concurrently, drains the session's event queue through::

    decode → normalize → dispatch sample → mission update → map update
           → dispatch phase changes / map artifact

Samples from one robot are processed strictly one at a time, in arrival
order. A sample that fails anywhere in the pipeline is logged and dropped;
only an authentication failure or an internal invariant violation stops
the worker.
"""

from __future__ import annotations

import asyncio
from collections import deque
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from ._codec import decode
from .exceptions import InvariantError, UnrecognizedPayloadError
from .mapping import MapEngine
from .mission import MissionStateMachine
from .models import MissionPhase
from .normalizer import normalize
from .session import SessionManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from .config import RobotConfig
    from .const import Command
    from .dispatcher import EventDispatcher
    from .models import MapArtifact, RawEvent, TelemetrySample

logger = logging.getLogger(__name__)

#: Mission phases in which the robot is drawing its cleaning path.
_DRAWING_PHASES = frozenset({MissionPhase.RUNNING, MissionPhase.PAUSED})

#: Number of recent frames kept for :func:`~roombalink.error_reporting.report_frame_dump`.
RECENT_FRAMES = 200


class RobotWorker:
    """
    Drives one robot from raw frames to canonical events.

    Example::

        dispatcher = EventDispatcher()
        worker = RobotWorker(config, dispatcher)
        task = asyncio.create_task(worker.run())
        await worker.send_command("start")
        ...
        await worker.stop()

    Args:
        config:     Robot configuration.
        dispatcher: Shared event dispatcher.
        session:    Pre-built session manager (tests); built from *config* otherwise.
        clock:      Monotonic clock for the mission state machine.
    """

    def __init__(
        self,
        config: RobotConfig,
        dispatcher: EventDispatcher,
        session: SessionManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.dispatcher = dispatcher
        self.session = session or SessionManager(config)
        self.mission = MissionStateMachine(config.mission, clock=clock)
        self.map = MapEngine(config.map)
        self.last_sample: TelemetrySample | None = None
        self.recent_frames: deque[dict[str, Any]] = deque(maxlen=RECENT_FRAMES)
        self.dropped_samples = 0

    @property
    def device_id(self) -> str:
        return self.config.blid

    @property
    def name(self) -> str:
        return self.config.display_name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Run until :meth:`stop` is called.

        Raises:
            AuthError:      The robot rejected the credentials.
            InvariantError: Internal state corruption (bug).
        """
        processor = asyncio.create_task(self._process_events(), name=f"roombalink-{self.name}")
        connection = asyncio.create_task(self.session.run(), name=f"roombalink-{self.name}-mqtt")
        try:
            done, _ = await asyncio.wait(
                {processor, connection}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                task.result()
        finally:
            for task in (processor, connection):
                task.cancel()
            for task in (processor, connection):
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            # Mission state does not outlive the process.
            self.mission.reset()
            self.map.discard()

    async def stop(self) -> None:
        await self.session.stop()

    async def send_command(self, command: Command | str) -> None:
        """Send a control command (see :meth:`SessionManager.send_command`)."""
        await self.session.send_command(command)

    async def _process_events(self) -> None:
        async for raw in self.session.events():
            self.process(raw)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def process(self, raw: RawEvent) -> None:
        """
        Run one frame through the pipeline.

        Raises:
            InvariantError: Internal state corruption; the worker must stop.
        """
        try:
            self._process(raw)
        except UnrecognizedPayloadError as exc:
            logger.debug("%s: dropped frame on %s: %s", self.name, raw.topic, exc)
        except InvariantError:
            logger.exception("%s: internal invariant violated", self.name)
            raise
        except Exception:
            self.dropped_samples += 1
            logger.exception("%s: failed to process frame on %s", self.name, raw.topic)

    def _process(self, raw: RawEvent) -> None:
        payload = decode(raw.payload)
        self.recent_frames.append({"topic": raw.topic, "payload": payload})
        sample = normalize(payload, received_at=time.time())
        self.last_sample = sample
        self.dispatcher.publish(self.device_id, sample)

        update = self.mission.step(sample)
        if update.started is not None and self.config.map.enabled:
            self.map.begin(update.started.mission_id)
        if update.pose is not None and self.map.active:
            self.map.add_pose(update.pose)

        for change in update.changes:
            if change.phase not in _DRAWING_PHASES and self.map.active:
                # Docking trips are not drawn; resume on a new stroke.
                self.map.break_stroke()
            self.dispatcher.publish(self.device_id, change)

        if update.finished is not None:
            artifact = self._finish_map(update.finished.mission_id)
            if artifact is not None:
                self.dispatcher.publish(self.device_id, artifact)

    def _finish_map(self, mission_id: str) -> MapArtifact | None:
        if self.map.mission_id != mission_id:
            return None
        return self.map.finalize()
