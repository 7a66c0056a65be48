"""
pytest fixtures and mock MQTT client for python-roombalink tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from roombalink.config import MapConfig, MissionConfig, RobotConfig
from roombalink.models import PayloadShape, PhaseHint, Pose, PoseQuality, TelemetrySample

# ---------------------------------------------------------------------------
# Helpers (used in multiple test modules)
# ---------------------------------------------------------------------------


def wire(payload: dict) -> bytes:
    """Encode a dict the way the robot sends it."""
    return json.dumps(payload).encode()


def shadow(**reported: Any) -> dict[str, Any]:
    """Wrap reported fields in a shadow delta envelope."""
    return {"state": {"reported": reported}}


def mission_status(cycle: str, phase: str, error: int = 0, **extra: Any) -> dict[str, Any]:
    return shadow(cleanMissionStatus={"cycle": cycle, "phase": phase, "error": error, **extra})


def make_sample(
    hint: PhaseHint | None = None,
    *,
    pose: tuple[float, float] | None = None,
    heading: float = 0.0,
    battery: int | None = None,
    error_code: int | None = None,
    docked: bool | None = None,
    suspect: bool = False,
    timestamp: float = 1_700_000_000.0,
    **kwargs: Any,
) -> TelemetrySample:
    """Build a TelemetrySample directly, bypassing the normalizer."""
    quality = PoseQuality.SUSPECT if suspect else PoseQuality.VALID
    return TelemetrySample(
        timestamp=timestamp,
        shape=PayloadShape.SHADOW,
        battery=battery,
        docked=docked,
        error_code=error_code,
        phase_hint=hint,
        pose=Pose(pose[0], pose[1], heading) if pose is not None else None,
        pose_quality=quality,
        quality=quality,
        **kwargs,
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate* holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeTransport:
    """In-memory stand-in for MqttTransport, driven by a FakeTransportFactory."""

    def __init__(self, factory: FakeTransportFactory, **kwargs: Any) -> None:
        self.factory = factory
        self.kwargs = kwargs
        self.on_frame = kwargs["on_frame"]
        self.on_lost = kwargs["on_lost"]
        self.handshake_error: Exception | None = None
        self.open_error: Exception | None = None
        self.closed = False
        self.is_connected = False

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error

    async def handshake(self) -> None:
        if self.handshake_error is not None:
            raise self.handshake_error
        self.is_connected = True

    async def disconnect(self) -> None:
        self.closed = True
        self.is_connected = False

    async def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        if self.factory.publish_error is not None:
            raise self.factory.publish_error
        self.factory.published.append((topic, json.loads(payload)))

    def feed(self, payload: dict[str, Any], topic: str = "wifistat") -> None:
        """Deliver one frame as the robot would."""
        self.on_frame(topic, wire(payload))


class FakeTransportFactory:
    """
    Builds FakeTransports; ``handshake_errors`` are raised by successive
    connection attempts, after which handshakes succeed.
    """

    def __init__(self, *handshake_errors: Exception) -> None:
        self.handshake_errors = list(handshake_errors)
        self.transports: list[FakeTransport] = []
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.publish_error: Exception | None = None

    def __call__(self, **kwargs: Any) -> FakeTransport:
        transport = FakeTransport(self, **kwargs)
        if self.handshake_errors:
            transport.handshake_error = self.handshake_errors.pop(0)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_blid() -> str:
    """A test robot BLID."""
    return "3115850251687850"


@pytest.fixture
def sample_address() -> str:
    """Test robot IP."""
    return "192.168.1.50"


@pytest.fixture
def robot_config(sample_address: str, sample_blid: str) -> RobotConfig:
    return RobotConfig(
        address=sample_address,
        blid=sample_blid,
        password=":1:1486937829:gOoHGWIzlLoMO5Ge",
        name="Downstairs",
        connect_timeout=0.5,
        liveness_timeout=30.0,
        backoff_base=0.01,
        backoff_ceiling=0.08,
        map=MapConfig(width=40, height=40, scale=1.0),
        mission=MissionConfig(idle_settle=10.0),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def shadow_state_dict() -> dict[str, Any]:
    """
    Realistic shadow delta from a 960 (firmware 3.x) while cleaning.

    Trimmed from a live capture; unrelated keys left in to exercise the
    "unknown fields are ignored" path.
    """
    return {
        "state": {
            "reported": {
                "batPct": 87,
                "bin": {"present": True, "full": False},
                "cleanMissionStatus": {
                    "cycle": "clean",
                    "phase": "run",
                    "expireM": 0,
                    "rechrgM": 0,
                    "error": 0,
                    "notReady": 0,
                    "mssnM": 12,
                    "sqft": 140,
                    "initiator": "localApp",
                    "nMssn": 132,
                },
                "pose": {"theta": 179, "point": {"x": 181, "y": -26}},
                "signal": {"rssi": -44, "snr": 36},
            }
        }
    }


@pytest.fixture
def legacy_mission_dict() -> dict[str, Any]:
    """Firmware 1.x mission document."""
    return {
        "ok": {
            "flags": 0,
            "cycle": "clean",
            "phase": "run",
            "pos": {"theta": -90, "point": {"x": 12, "y": 340}},
            "batPct": 64,
            "expireM": 0,
            "rechrgM": 0,
            "error": 0,
            "notReady": 0,
            "mssnM": 3,
            "sqft": 21,
        },
        "id": 2,
    }


@pytest.fixture
def mock_paho_client():
    """
    Return a MagicMock that pretends to be a paho-mqtt Client.

    Auto-fires the paho v2 ``on_connect`` callback with rc=0 when
    ``connect()`` is called.
    """
    with patch("paho.mqtt.client.Client") as MockClient:  # noqa: N806
        mock_instance = MagicMock()
        MockClient.return_value = mock_instance
        mock_instance.connack_rc = 0

        # (client, userdata, flags, reason_code, props)
        def connect_side_effect(host, port, *args, **kwargs):
            if mock_instance.on_connect:
                mock_instance.on_connect(mock_instance, None, None, mock_instance.connack_rc, None)

        mock_instance.connect.side_effect = connect_side_effect
        mock_instance.loop_start = MagicMock()
        mock_instance.loop_stop = MagicMock()
        mock_instance.disconnect = MagicMock()
        mock_instance.subscribe = MagicMock()
        mock_instance.publish = MagicMock(return_value=MagicMock(rc=0))

        yield mock_instance
