"""Tests for harp.services.event_stream — extracting results from Gradio's event stream."""
from __future__ import annotations

import pytest

from harp.errors import ProtocolError, RemoteJobError
from harp.services.event_stream import extract_data_line, parse_data_payload


def test_complete_event_payload_is_returned_trimmed() -> None:
    assert extract_data_line('event: complete\ndata: {"x":1}   \n') == '{"x":1}'


def test_last_data_line_wins() -> None:
    body = (
        "event: generating\n"
        'data: ["partial"]\n'
        "\n"
        "event: heartbeat\n"
        "data: null\n"
        "\n"
        "event: complete\n"
        'data: ["final"]\n'
    )

    assert parse_data_payload(body) == ["final"]


def test_crlf_line_endings() -> None:
    assert parse_data_payload('event: complete\r\ndata: [1, 2]\r\n\r\n') == [1, 2]


def test_missing_data_line_is_protocol_error() -> None:
    with pytest.raises(ProtocolError, match="not found"):
        extract_data_line("event: complete\n\n")


def test_empty_body_is_protocol_error() -> None:
    with pytest.raises(ProtocolError):
        extract_data_line("")


@pytest.mark.parametrize(
    "body, message",
    [
        ("event: error\ndata: null\n", "without details"),
        ('event: error\ndata: "CUDA out of memory"\n', "CUDA out of memory"),
        ("event: error\ndata: \n", "without details"),
    ],
)
def test_error_event_raises_remote_job_error(body: str, message: str) -> None:
    with pytest.raises(RemoteJobError) as exc_info:
        extract_data_line(body)

    assert message in exc_info.value.message
    assert "failed to process" in exc_info.value.user_message


def test_error_event_wins_over_earlier_data() -> None:
    body = 'event: generating\ndata: ["partial"]\n\nevent: error\ndata: null\n'

    with pytest.raises(RemoteJobError):
        parse_data_payload(body)


def test_invalid_json_is_protocol_error() -> None:
    with pytest.raises(ProtocolError, match="not valid JSON"):
        parse_data_payload("event: complete\ndata: {not json\n")
