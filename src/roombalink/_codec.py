"""
roombalink._codec — JSON encode/decode helpers for Roomba MQTT payloads.

Robot → app frames are plain UTF-8 JSON. Some firmware versions emit the
non-standard literals ``nan``, ``inf`` and ``-inf`` (e.g. in ``signal``
statistics); these are rewritten to the tokens Python's ``json`` accepts.

App → robot commands are compact JSON objects::

    {"command": "start", "time": 1612462418, "initiator": "localApp"}
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from .const import COMMAND_INITIATOR

# Bare nan/inf tokens in value position, never inside strings such as "lab:info".
_LITERAL_RE = re.compile(r"(?<=[:\[,])(\s*)(-?)(nan|inf)\b(?=\s*[,}\]])")
_LITERALS = {"nan": "NaN", "inf": "Infinity"}


def encode(payload: dict[str, Any]) -> bytes:
    """Encode a dict to compact JSON bytes."""
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def encode_command(command: str, timestamp: int | None = None) -> bytes:
    """
    Build the wire payload for a ``cmd`` publish.

    Args:
        command:   Command name (``start``, ``stop``, ``pause``, ``resume``, ``dock``).
        timestamp: Unix time in seconds; defaults to now.
    """
    return encode(
        {
            "command": command,
            "time": int(time.time()) if timestamp is None else timestamp,
            "initiator": COMMAND_INITIATOR,
        }
    )


def decode(data: bytes) -> Any:
    """
    Decode a JSON frame received from the robot.

    Returns ``{"_raw": data.hex()}`` (first 512 bytes) when the frame is not
    valid JSON, so callers can log it without a second failure path.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return {"_raw": data[:512].hex()}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    fixed = _LITERAL_RE.sub(_fix_literal, text)
    try:
        return json.loads(fixed)
    except json.JSONDecodeError:
        return {"_raw": data[:512].hex()}


def _fix_literal(match: re.Match[str]) -> str:
    space, sign, word = match.groups()
    if word == "nan":
        return space + _LITERALS[word]
    return space + sign + _LITERALS[word]
