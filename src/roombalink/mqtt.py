"""
roombalink.mqtt — Async MQTT-over-TLS transport to the Roomba's embedded broker.

Wraps ``paho-mqtt`` in an asyncio-friendly interface. The robot runs its own
broker on port 8883 and accepts exactly one client at a time; the username
and client id are the BLID, the password is the local password.

Protocol notes:
- The robot's certificate is self-signed; peer verification is disabled.
- 980 and older robots negotiate only at OpenSSL security level 1.
- The robot publishes reported-state deltas on
  ``$aws/things/{blid}/shadow/update`` and ``wifistat``; we subscribe to ``#``.
- Commands are published on ``cmd`` (see :func:`roombalink._codec.encode_command`).

Reconnection is NOT handled here: a dropped connection is reported through
``on_lost`` and :class:`~roombalink.session.SessionManager` decides when to
build a fresh connection.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

import paho.mqtt.client as mqtt

from .const import (
    AUTH_FAILURE_CODES,
    DEFAULT_CONNECT_TIMEOUT,
    MQTT_KEEPALIVE,
    ROBOT_PORT,
    TLS_CIPHERS,
    TOPIC_ALL,
)
from .exceptions import AuthError, HandshakeTimeoutError, RoombaError, TransportError

logger = logging.getLogger(__name__)


def _tls_context() -> ssl.SSLContext:
    """TLS context accepting the robot's self-signed certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_ciphers(TLS_CIPHERS)
    return context


class MqttTransport:
    """
    Asyncio-compatible MQTT transport for one robot.

    Uses paho-mqtt v2 (``CallbackAPIVersion.VERSION2``) callbacks, bridged to
    asyncio via ``loop.call_soon_threadsafe``. Inbound frames are handed to
    ``on_frame(topic, payload)`` on the event loop; an unexpected disconnect
    calls ``on_lost(exc)`` on the event loop.

    Example::

        transport = MqttTransport("192.168.1.50", blid, password, on_frame=print)
        await transport.connect()
        await transport.publish("cmd", encode_command("dock"))
        await transport.disconnect()
    """

    def __init__(
        self,
        address: str,
        blid: str,
        password: str,
        port: int = ROBOT_PORT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        on_frame: Callable[[str, bytes], None] | None = None,
        on_lost: Callable[[RoombaError], None] | None = None,
    ) -> None:
        self._address = address
        self._blid = blid
        self._password = password
        self._port = port
        self._connect_timeout = connect_timeout
        self._on_frame = on_frame
        self._on_lost = on_lost

        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connack = asyncio.Event()
        self._connect_error: RoombaError | None = None
        self._connected = False
        self._closing = False

    @property
    def is_connected(self) -> bool:
        """True between a successful CONNACK and the next disconnect."""
        return self._connected

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the TLS connection and complete the MQTT handshake.

        Raises:
            AuthError:             Credentials rejected by the robot.
            HandshakeTimeoutError: No CONNACK within the connect timeout.
            TransportError:        Socket/TLS failure or other CONNACK refusal.
        """
        await self.open()
        await self.handshake()

    async def open(self) -> None:
        """
        Open the TCP/TLS socket and send CONNECT.

        Raises:
            TransportError: Socket or TLS failure.
        """
        self._loop = asyncio.get_running_loop()
        self._connack.clear()
        self._connect_error = None
        self._closing = False

        try:
            context = _tls_context()
        except ssl.SSLError as exc:
            raise TransportError(f"Cannot set up TLS for robot at {self._address}: {exc}") from exc

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._blid,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )
        self._client.username_pw_set(self._blid, self._password)
        self._client.tls_set_context(context)
        self._client.tls_insecure_set(True)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        try:
            # TCP + TLS handshake block; keep them off the event loop.
            await self._loop.run_in_executor(
                None, self._client.connect, self._address, self._port, MQTT_KEEPALIVE
            )
        except OSError as exc:
            raise TransportError(
                f"Cannot connect to robot at {self._address}:{self._port}: {exc}"
            ) from exc

        self._client.loop_start()

    async def handshake(self) -> None:
        """
        Wait for the robot's CONNACK.

        Raises:
            AuthError:             Credentials rejected by the robot.
            HandshakeTimeoutError: No CONNACK within the connect timeout.
            TransportError:        Any other CONNACK refusal.
        """
        try:
            await asyncio.wait_for(self._connack.wait(), timeout=self._connect_timeout)
        except TimeoutError as exc:
            await self._stop_loop()
            raise HandshakeTimeoutError(
                f"Timed out waiting for MQTT handshake with {self._address}:{self._port} "
                "(is another app connected?)"
            ) from exc

        if self._connect_error is not None:
            await self._stop_loop()
            raise self._connect_error

        logger.info("MQTT connected to %s:%d (blid=%s)", self._address, self._port, self._blid)

    async def disconnect(self) -> None:
        """
        Cleanly disconnect and stop the paho network thread.

        Safe to call repeatedly and after a failed :meth:`connect`.
        """
        if self._client is None:
            return
        self._closing = True
        self._connected = False
        try:
            self._client.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.debug("MQTT disconnect from %s raised: %s", self._address, exc)
        await self._stop_loop()
        self._client = None
        logger.info("MQTT disconnected from %s", self._address)

    async def _stop_loop(self) -> None:
        # loop_stop() joins the paho thread; run it off the event loop.
        if self._client is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._client.loop_stop)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        """
        Publish raw bytes on *topic*.

        Raises:
            TransportError: If not connected or paho refuses the publish.
        """
        if not self._connected or self._client is None:
            raise TransportError("Not connected to robot MQTT broker")
        info = self._client.publish(topic, payload, qos=qos)
        rc = getattr(info, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish on {topic!r} failed rc={rc}")
        logger.debug("→ MQTT [%s] %s", topic, payload[:160])

    # ------------------------------------------------------------------
    # paho-mqtt callbacks (called from paho thread → bridge to asyncio)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: Any,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """
        paho-mqtt v2 on_connect callback.

        ``reason_code`` is a ``ReasonCode`` under paho v2 (MQTT v3 return
        codes 4/5 surface as 134/135); ``getattr(..., "value", ...)``
        normalises it to an ``int``.
        """
        rc = getattr(reason_code, "value", reason_code)
        if rc == 0:
            self._connected = True
            client.subscribe(TOPIC_ALL)
            logger.debug("Subscribed: %s", TOPIC_ALL)
        elif rc in AUTH_FAILURE_CODES:
            self._connect_error = AuthError(
                f"Robot at {self._address} rejected BLID/password (rc={rc})",
                reason_code=rc,
            )
            logger.error("MQTT authentication rejected by %s rc=%s", self._address, rc)
        else:
            self._connect_error = TransportError(f"MQTT connection refused rc={rc}")
            logger.error("MQTT connect failed rc=%s", rc)
        if self._loop:
            self._loop.call_soon_threadsafe(self._connack.set)

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """paho-mqtt v2 on_disconnect callback."""
        rc = getattr(reason_code, "value", reason_code)
        was_connected = self._connected
        self._connected = False
        if self._closing or not was_connected:
            return
        logger.warning("MQTT connection to %s lost rc=%s", self._address, rc)
        if self._loop and self._on_lost is not None:
            error = TransportError(f"Connection to {self._address} lost (rc={rc})")
            self._loop.call_soon_threadsafe(self._on_lost, error)

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        """paho-mqtt on_message callback: forward the raw frame to the loop."""
        try:
            payload = bytes(msg.payload)
            logger.debug("← MQTT [%s] %s", msg.topic, payload[:160])
            if self._loop and self._on_frame is not None:
                self._loop.call_soon_threadsafe(self._on_frame, msg.topic, payload)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error handling MQTT message on %s: %s", getattr(msg, "topic", "?"), exc)
