"""Opt-in GlitchTip/Sentry reporting for python-roombalink.

Nothing is sent unless a DSN is configured. Two entry points:

- :func:`init_error_reporting` hooks the SDK up with a ``before_send``
  scrubber so robot passwords, BLIDs and network identity never leave the
  machine.
- :func:`report_frame_dump` uploads the raw frames a worker kept in
  ``recent_frames``. It is how unrecognized firmware payloads reach the
  maintainers.
"""

import json
import logging
import os
import re
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

#: Substrings that mark a mapping key as secret.
_SECRET_KEY_PARTS: tuple[str, ...] = ("password", "token", "secret", "credential", "blid")
#: Exact keys the robot reports about its network identity.
_NETWORK_KEYS: frozenset[str] = frozenset({"mac", "bssid", "ssid", "addr", "gw"})
_API_KEY_RE = re.compile(r"(?:_|api|access|auth|private)key", re.IGNORECASE)
# $aws/things/<blid>/shadow/update
_SHADOW_TOPIC_RE = re.compile(r"(\$aws/things/)[^/]+")


def _resolve_dsn(dsn: str | None) -> str | None:
    # An empty ROOMBALINK_SENTRY_DSN switches reporting off even if SENTRY_DSN is set.
    own = os.environ.get("ROOMBALINK_SENTRY_DSN")
    if own == "":
        return None
    return dsn or own or os.environ.get("SENTRY_DSN") or None


def init_error_reporting(
    dsn: str | None = None,
    environment: str = "production",
    enabled: bool = True,
) -> None:
    """Set up Sentry/GlitchTip if a DSN is available.

    Args:
        dsn: Explicit DSN. Falls back to ``ROOMBALINK_SENTRY_DSN`` then
             ``SENTRY_DSN``.
        environment: Environment tag attached to every event.
        enabled: Pass False to skip initialization entirely.
    """
    if not enabled:
        return
    resolved = _resolve_dsn(dsn)
    if resolved is None:
        return

    try:
        import sentry_sdk  # noqa: PLC0415
    except ImportError:
        logger.debug("sentry-sdk is not installed, reporting stays off")
        return

    try:
        sentry_sdk.init(
            dsn=resolved,
            environment=environment,
            traces_sample_rate=0.1,
            send_default_pii=False,
            before_send=_scrub_event,  # type: ignore[arg-type, unused-ignore]
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not initialize error reporting: %s", exc)
        return
    logger.debug("Error reporting enabled for environment %s", environment)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if lowered in _NETWORK_KEYS:
        return True
    return any(part in lowered for part in _SECRET_KEY_PARTS) or bool(_API_KEY_RE.search(key))


def _redact_message(message: str) -> str:
    lowered = message.lower()
    secret_words = _SECRET_KEY_PARTS[:-1]
    if any(word in lowered for word in secret_words) or _API_KEY_RE.search(message):
        return REDACTED
    return scrub_topic(message)


def _scrub_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _scrub_dict(value)
    if isinstance(value, list):
        return [_scrub_value(item) for item in value]
    return value


def _scrub_dict(d: dict[str, Any]) -> dict[str, Any]:
    """Copy *d* with sensitive keys redacted at every depth."""
    return {
        key: REDACTED if _is_sensitive_key(str(key)) else _scrub_value(value)
        for key, value in d.items()
    }


def _scrub_event(event: dict, hint: dict) -> dict:  # type: ignore[type-arg]
    """``before_send`` hook."""
    extra = event.get("extra")
    if extra:
        event["extra"] = _scrub_dict(extra)

    for crumb in event.get("breadcrumbs", {}).get("values", ()):
        if "message" in crumb:
            crumb["message"] = _redact_message(str(crumb["message"]))
        if isinstance(crumb.get("data"), dict):
            crumb["data"] = _scrub_dict(crumb["data"])
    return event


def scrub_topic(text: str) -> str:
    """Mask the BLID embedded in AWS shadow topic names."""
    return _SHADOW_TOPIC_RE.sub(rf"\1{REDACTED}", text)


def scrub_frame(frame: dict[str, Any]) -> dict[str, Any]:
    """Scrubbed copy of one ``{"topic", "payload"}`` frame record."""
    out = dict(frame)
    topic = out.get("topic")
    if isinstance(topic, str):
        out["topic"] = scrub_topic(topic)
    out["payload"] = _scrub_value(out.get("payload"))
    return out


def report_frame_dump(
    frames: list[dict[str, Any]],
    max_frames: int = 500,
    max_payload_chars: int = 50_000,
) -> bool:
    """Upload the most recent *frames* as one info-level message.

    Only the last *max_frames* frames are sent and the JSON dump is cut at
    *max_payload_chars*. Returns False without sending anything when the
    SDK is missing or was never initialized.
    """
    try:
        import sentry_sdk  # noqa: PLC0415
    except ImportError:
        logger.debug("sentry-sdk is not installed, frame dump skipped")
        return False
    if not sentry_sdk.is_initialized():
        logger.debug("Reporting is not initialized, frame dump skipped")
        return False

    selected = [scrub_frame(frame) for frame in frames[-max_frames:]]
    dump = json.dumps(selected, indent=2, ensure_ascii=False)
    if len(dump) > max_payload_chars:
        dump = f"{dump[:max_payload_chars]}\n... (truncated)"

    sentry_sdk.capture_message(
        "Roomba frame dump (user-reported)",
        level="info",
        extras={"frame_dump": dump, "frame_count": len(selected)},
    )
    logger.info("Sent %d robot frames for troubleshooting", len(selected))
    return True
