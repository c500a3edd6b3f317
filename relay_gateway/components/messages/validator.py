"""
Inbound frame validation.

validate() is a pure function from a raw frame to an Envelope variant. Every
failure raises a ValidationError subclass; callers log and drop, nothing is
ever reported back to the sender.
"""

from __future__ import annotations

import json
from typing import Any

from relay_gateway.components.core.errors import MalformedPayload, UnknownType
from relay_gateway.components.messages.envelope import ENVELOPE_TYPES, Envelope


def parse_frame(raw: str | bytes) -> dict[str, Any]:
    """
    Decode and parse a frame into a JSON object.

    Binary frames are accepted as UTF-8 text, the same as text frames.

    Raises:
        MalformedPayload: Not valid UTF-8, not JSON, or not a JSON object.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"Frame is not valid UTF-8: {e.reason}") from e

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MalformedPayload(f"Frame is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload(f"Frame must be a JSON object, got {type(data).__name__}")

    return data


def validate_message(data: dict[str, Any]) -> Envelope:
    """
    Validate a parsed object and build its Envelope variant.

    Raises:
        UnknownType: `type` missing, not a string or not an allowed type.
        MissingField: A field required by the type is absent.
    """
    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise UnknownType("Message has no string 'type'")

    envelope_cls = ENVELOPE_TYPES.get(message_type)
    if envelope_cls is None:
        raise UnknownType(f"Unknown message type '{message_type}'", message_type)

    return envelope_cls.from_payload(data)


def validate(raw: str | bytes) -> Envelope:
    """
    Parse and validate a raw frame.

    Args:
        raw: Text or binary frame as received.

    Returns:
        The typed Envelope variant.

    Raises:
        MalformedPayload | UnknownType | MissingField
    """
    return validate_message(parse_frame(raw))
