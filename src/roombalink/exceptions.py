"""
roombalink.exceptions — Custom exception hierarchy for the roombalink library.

All exceptions raised by the library are subclasses of ``RoombaError``,
making it easy to catch them with a single ``except RoombaError`` clause.

Hierarchy::

    RoombaError
    ├── TransportError              # TCP/TLS/MQTT failure (retryable)
    │   └── HandshakeTimeoutError   # CONNACK not received in time
    ├── AuthError                   # BLID/password rejected (fatal)
    ├── NotConnectedError           # command sent while not Connected
    ├── UnrecognizedPayloadError    # frame could not be normalized
    └── InvariantError              # internal state machine violation
"""

from __future__ import annotations


class RoombaError(Exception):
    """Base class for all roombalink exceptions."""


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class TransportError(RoombaError):
    """
    The connection to the robot's MQTT broker failed at the network level.

    Raised for connection refused, unreachable host, TLS failures and
    unexpected drops. The session manager retries these with backoff.
    """


class HandshakeTimeoutError(TransportError):
    """
    The robot did not complete the MQTT handshake within the connect timeout.

    Roombas accept only one local client at a time; a running mobile app
    session commonly causes this.
    """


class AuthError(RoombaError):
    """
    The robot rejected the BLID / password pair.

    Not retried: the session moves to a terminal ``Disconnected`` state
    until the credentials are reconfigured.

    Attributes:
        reason_code: MQTT CONNACK return code (4 = bad credentials,
                     5 = not authorised).
    """

    def __init__(self, message: str, reason_code: int | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class NotConnectedError(RoombaError):
    """A command was issued while the session was not ``Connected``."""


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class UnrecognizedPayloadError(RoombaError):
    """
    A raw frame did not match any known payload shape.

    Non-fatal: the caller logs and drops the frame.

    Attributes:
        payload: The offending (decoded) payload, when one was available.
    """

    def __init__(self, message: str, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class InvariantError(RoombaError):
    """An internal invariant was violated (e.g. mutating a finished mission)."""
