"""
roombalink.normalizer — Raw payload → canonical :class:`TelemetrySample`.

Pure and stateless: safe to call concurrently for independent payloads.

Roomba firmware generations report the same facts in different envelopes.
Each envelope is a tagged variant (:class:`~roombalink.models.PayloadShape`)
detected once by :func:`detect_shape`; :func:`normalize` then dispatches to
the variant's extractor. Adding a firmware shape means adding one enum
member, one detector branch and one extractor.

Shapes::

    shadow    {"state": {"reported": {"batPct": 97, "cleanMissionStatus": {...}}}}
    reported  {"batPct": 97, "cleanMissionStatus": {...}, "pose": {...}}
    legacy    {"ok": {"batPct": 97, "cycle": "clean", "phase": "run", "pos": {...}}}

Field sources (shadow / reported)::

    batPct                         → battery
    bin.full                       → bin_full
    cleanMissionStatus.cycle       → cycle, phase_hint
    cleanMissionStatus.phase       → phase, phase_hint, docked
    cleanMissionStatus.error       → error_code
    cleanMissionStatus.mssnM/sqft  → mission_minutes / area_sqft
    pose.point.x / .y, pose.theta  → pose
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import math
import time
from typing import Any

from .const import (
    CYCLE_NONE,
    DOCKED_PHASES,
    PAUSE_PHASES,
    POSE_COORD_LIMIT,
    RETURNING_PHASES,
    RUN_PHASES,
)
from .exceptions import UnrecognizedPayloadError
from .models import PayloadShape, PhaseHint, Pose, PoseQuality, TelemetrySample

#: Reported-document keys that carry telemetry this library understands.
TELEMETRY_KEYS: frozenset[str] = frozenset({"batPct", "bin", "cleanMissionStatus", "pose"})

#: Flat keys of the firmware 1.x mission document.
LEGACY_KEYS: frozenset[str] = frozenset({"batPct", "cycle", "phase", "pos", "error"})


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def _to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


# ---------------------------------------------------------------------------
# Field extraction shared by all variants
# ---------------------------------------------------------------------------


def phase_hint(cycle: str | None, phase: str | None) -> PhaseHint | None:
    """
    Derive the canonical phase hint from the device's ``cycle`` / ``phase``.

    ``cycle == "none"`` means no mission is open, whatever the phase says;
    firmware keeps reporting a stale ``run`` phase for a few seconds after a
    mission ends.
    """
    if cycle == CYCLE_NONE:
        return PhaseHint.IDLE
    if phase is None:
        return None
    if phase == "stuck":
        return PhaseHint.STUCK
    if phase in RUN_PHASES:
        return PhaseHint.RUN
    if phase in PAUSE_PHASES:
        return PhaseHint.PAUSE
    if phase in RETURNING_PHASES:
        return PhaseHint.RETURNING
    if phase in DOCKED_PHASES:
        return PhaseHint.DOCKED
    return None


def _battery(value: Any) -> tuple[int | None, bool]:
    """Return ``(battery, clamped)``."""
    battery = _to_int(value)
    if battery is None:
        return None, False
    if battery < 0:
        return 0, True
    if battery > 100:
        return 100, True
    return battery, False


def _pose(point_x: Any, point_y: Any, theta: Any) -> tuple[Pose | None, PoseQuality]:
    """Build a pose; out-of-range or non-finite readings are marked suspect."""
    x = _to_float(point_x)
    y = _to_float(point_y)
    if x is None or y is None:
        return None, PoseQuality.VALID
    if not (math.isfinite(x) and math.isfinite(y)):
        return None, PoseQuality.SUSPECT
    quality = PoseQuality.VALID
    heading = _to_float(theta)
    if heading is None or not math.isfinite(heading):
        heading = 0.0
        quality = PoseQuality.SUSPECT if theta is not None else PoseQuality.VALID
    if abs(x) > POSE_COORD_LIMIT or abs(y) > POSE_COORD_LIMIT:
        quality = PoseQuality.SUSPECT
    return Pose(x=x, y=y, heading=heading % 360.0), quality


def _timestamp(payload: Mapping[str, Any], received_at: float | None) -> float:
    device_ts = _to_float(payload.get("timestamp"))
    if device_ts is not None and math.isfinite(device_ts) and device_ts > 0:
        return device_ts
    return received_at if received_at is not None else time.time()


def _build(
    shape: PayloadShape,
    timestamp: float,
    *,
    battery_raw: Any,
    bin_full: Any,
    cycle: Any,
    phase: Any,
    error: Any,
    mission_minutes: Any,
    area_sqft: Any,
    pose_doc: Mapping[str, Any] | None,
) -> TelemetrySample:
    battery, clamped = _battery(battery_raw)
    cycle_str = _to_str(cycle)
    phase_str = _to_str(phase)

    pose: Pose | None = None
    pose_quality = PoseQuality.VALID
    if pose_doc is not None:
        point = _mapping(pose_doc.get("point"))
        pose, pose_quality = _pose(point.get("x"), point.get("y"), pose_doc.get("theta"))

    docked: bool | None = None
    if phase_str is not None:
        docked = phase_str in DOCKED_PHASES

    suspect = clamped or pose_quality is PoseQuality.SUSPECT
    return TelemetrySample(
        timestamp=timestamp,
        shape=shape,
        battery=battery,
        bin_full=_to_bool(bin_full),
        docked=docked,
        error_code=_to_int(error),
        phase_hint=phase_hint(cycle_str, phase_str),
        cycle=cycle_str,
        phase=phase_str,
        pose=pose,
        pose_quality=pose_quality,
        quality=PoseQuality.SUSPECT if suspect else PoseQuality.VALID,
        mission_minutes=_to_int(mission_minutes),
        area_sqft=_to_int(area_sqft),
    )


# ---------------------------------------------------------------------------
# Variant extractors
# ---------------------------------------------------------------------------


def _from_reported(
    reported: Mapping[str, Any],
    shape: PayloadShape,
    timestamp: float,
) -> TelemetrySample:
    if not TELEMETRY_KEYS.intersection(reported):
        raise UnrecognizedPayloadError("reported document carries no telemetry fields", reported)
    status = _mapping(reported.get("cleanMissionStatus"))
    pose_doc = reported.get("pose")
    return _build(
        shape,
        timestamp,
        battery_raw=reported.get("batPct"),
        bin_full=_mapping(reported.get("bin")).get("full"),
        cycle=status.get("cycle"),
        phase=status.get("phase"),
        error=status.get("error"),
        mission_minutes=status.get("mssnM"),
        area_sqft=status.get("sqft"),
        pose_doc=pose_doc if isinstance(pose_doc, Mapping) else None,
    )


def _extract_shadow(payload: Mapping[str, Any], received_at: float | None) -> TelemetrySample:
    reported = payload["state"]["reported"]
    return _from_reported(reported, PayloadShape.SHADOW, _timestamp(payload, received_at))


def _extract_reported(payload: Mapping[str, Any], received_at: float | None) -> TelemetrySample:
    return _from_reported(payload, PayloadShape.REPORTED, _timestamp(payload, received_at))


def _extract_legacy(payload: Mapping[str, Any], received_at: float | None) -> TelemetrySample:
    doc = payload["ok"]
    if not LEGACY_KEYS.intersection(doc):
        raise UnrecognizedPayloadError("legacy document carries no telemetry fields", payload)
    pose_doc = doc.get("pos")
    return _build(
        PayloadShape.LEGACY,
        _timestamp(payload, received_at),
        battery_raw=doc.get("batPct"),
        bin_full=_mapping(doc.get("bin")).get("full"),
        cycle=doc.get("cycle"),
        phase=doc.get("phase"),
        error=doc.get("error"),
        mission_minutes=doc.get("mssnM"),
        area_sqft=doc.get("sqft"),
        pose_doc=pose_doc if isinstance(pose_doc, Mapping) else None,
    )


_EXTRACTORS: dict[PayloadShape, Callable[[Mapping[str, Any], float | None], TelemetrySample]] = {
    PayloadShape.SHADOW: _extract_shadow,
    PayloadShape.REPORTED: _extract_reported,
    PayloadShape.LEGACY: _extract_legacy,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def detect_shape(payload: Any) -> PayloadShape:
    """
    Return the variant tag of a decoded payload.

    Raises:
        UnrecognizedPayloadError: If the payload matches no known variant.
    """
    if not isinstance(payload, Mapping):
        raise UnrecognizedPayloadError(
            f"payload is {type(payload).__name__}, expected an object", payload
        )
    if "_raw" in payload:
        raise UnrecognizedPayloadError("payload is not valid JSON", payload)
    if isinstance(payload.get("ok"), Mapping):
        return PayloadShape.LEGACY
    state = payload.get("state")
    if isinstance(state, Mapping) and isinstance(state.get("reported"), Mapping):
        return PayloadShape.SHADOW
    if TELEMETRY_KEYS.intersection(payload):
        return PayloadShape.REPORTED
    raise UnrecognizedPayloadError("payload matches no known shape", payload)


def normalize(payload: Any, received_at: float | None = None) -> TelemetrySample:
    """
    Translate one decoded payload into a :class:`TelemetrySample`.

    Args:
        payload:     Decoded JSON document (see :func:`roombalink._codec.decode`).
        received_at: Wall-clock receive time, used when the payload has no
                     ``timestamp`` of its own. Defaults to now.

    Raises:
        UnrecognizedPayloadError: If the payload is not telemetry.
    """
    shape = detect_shape(payload)
    return _EXTRACTORS[shape](payload, received_at)
