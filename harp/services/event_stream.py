"""Gradio event-stream helpers.

``GET /call/{endpoint}/{event_id}`` answers with a text/event-stream body::

    event: generating
    data: [...]

    event: complete
    data: [{"card": {...}, "ctrls": [...]}]

The terminal ``data:`` line carries the JSON-encoded result.  A failing app
reports ``event: error`` instead, usually with ``data: null``.
"""

from __future__ import annotations

import json
import logging

from harp.core.controls import JSONValue
from harp.errors import ProtocolError, RemoteJobError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
EVENT_PREFIX = "event: "


def extract_data_line(body: str) -> str:
    """Return the trimmed payload of the terminal ``data: `` line.

    Raises:
        RemoteJobError: the stream reported ``event: error``.
        ProtocolError: the body has no ``data: `` line.
    """
    event = ""
    payload: str | None = None
    error_payload: str | None = None

    for raw_line in body.splitlines():
        line = raw_line.strip()
        if line.startswith(EVENT_PREFIX):
            event = line[len(EVENT_PREFIX):].strip()
        elif line.startswith(DATA_PREFIX) or line == DATA_PREFIX.strip():
            data = line[len(DATA_PREFIX):].strip()
            if event == "error":
                error_payload = data
            else:
                payload = data

    if error_payload is not None:
        message = error_payload
        if not message or message == "null":
            message = "the Space reported an error without details"
        else:
            try:
                decoded = json.loads(message)
                if isinstance(decoded, str):
                    message = decoded
            except json.JSONDecodeError:
                pass
        raise RemoteJobError(message)

    if payload is None:
        raise ProtocolError(f"Key {DATA_PREFIX!r} not found in response", body=body[:500])
    return payload


def parse_data_payload(body: str) -> JSONValue:
    """``extract_data_line`` followed by JSON decoding."""
    data = extract_data_line(body)
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse event-stream JSON: %s (data: %s)", exc, data[:200])
        raise ProtocolError(f"event-stream data is not valid JSON: {exc}", body=body[:500]) from exc
