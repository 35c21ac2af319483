"""Pytest configuration and fixtures."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from harp.config import Settings
from harp.core.address import EndpointDescriptor
from harp.services.gradio_client import GradioClient


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async tests run without markers."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture(autouse=True)
def _reset_harp_logger() -> Iterator[None]:
    """configure_logging() detaches the harp logger from the root; undo it so caplog works."""
    yield
    harp_logger = logging.getLogger("harp")
    for handler in list(harp_logger.handlers):
        harp_logger.removeHandler(handler)
        handler.close()
    harp_logger.propagate = True
    harp_logger.setLevel(logging.NOTSET)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with a private temp dir, no log file and no retry delay."""
    return Settings(
        temp_dir=tmp_path / "work",
        log_file=None,
        retry_attempts=3,
        retry_backoff=[0.0],
        status_poll_interval=0.005,
    )


# ---------------------------------------------------------------------------
# Fake Gradio Space served through httpx.MockTransport
# ---------------------------------------------------------------------------

UPLOADED_PATH = "/tmp/gradio/0f3c/input.mid"
OUTPUT_PATH = "/tmp/gradio/9ab1/output.mid"
PROCESSED_BYTES = b"MThd-processed"


def default_controls_payload() -> list[dict[str, Any]]:
    return [{
        "card": {
            "name": "Pitch Shifter",
            "description": "Transposes a MIDI take.",
            "author": "HARP Lab",
            "tags": ["midi", "pitch"],
        },
        "ctrls": [
            {"ctrl_type": "midi_in", "label": "Input MIDI"},
            {"ctrl_type": "slider", "label": "Pitch Shift", "minimum": -24, "maximum": 24, "step": 1, "value": 0},
            {"ctrl_type": "toggle", "label": "Humanize", "value": False},
            {"ctrl_type": "combo_box", "label": "Scale", "options": ["major", "minor"], "value": "major"},
            {"ctrl_type": "knob", "label": "Mystery"},
        ],
    }]


def sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


class FakeSpace:
    """Routes the Gradio call/poll, upload and file endpoints of one Space."""

    def __init__(self) -> None:
        self.uploaded_path = UPLOADED_PATH
        self.output_path = OUTPUT_PATH
        self.controls_payload: Any = default_controls_payload()
        self.predict_output: Any = [{"path": self.output_path, "url": None}]
        self.predict_error: str | None = None
        self.output_bytes = PROCESSED_BYTES
        self.failures: dict[str, list[int]] = {}
        self.requests: list[httpx.Request] = []
        self.uploads: list[bytes] = []
        self.predict_bodies: list[dict[str, Any]] = []
        # When set, the predict long-poll blocks until release_predict is set
        self.release_predict: asyncio.Event | None = None
        self.predict_polling = False
        # Called with each request path before it is routed
        self.on_request: Callable[[str], None] | None = None

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.on_request is not None:
            self.on_request(path)

        pending = self.failures.get(path)
        if pending:
            return httpx.Response(pending.pop(0), text="Space is busy")

        if path == "/upload":
            self.uploads.append(await request.aread())
            return httpx.Response(200, json=[self.uploaded_path])
        if path == "/call/controls":
            return httpx.Response(200, json={"event_id": "ev-controls"})
        if path == "/call/controls/ev-controls":
            return httpx.Response(200, text=sse("complete", self.controls_payload))
        if path == "/call/predict":
            self.predict_bodies.append(json.loads(await request.aread()))
            return httpx.Response(200, json={"event_id": "ev-predict"})
        if path == "/call/predict/ev-predict":
            self.predict_polling = True
            if self.release_predict is not None:
                await self.release_predict.wait()
            if self.predict_error is not None:
                return httpx.Response(200, text=sse("error", self.predict_error))
            return httpx.Response(200, text=sse("complete", self.predict_output))
        if path.startswith("/file="):
            return httpx.Response(200, content=self.output_bytes)
        return httpx.Response(404, text="Not Found")


@pytest.fixture
def fake_space() -> FakeSpace:
    return FakeSpace()


@pytest.fixture
def client_factory(fake_space: FakeSpace) -> Callable[[EndpointDescriptor, Settings], GradioClient]:
    """ModelSession client factory wired to the fake Space."""

    def _factory(endpoint: EndpointDescriptor, settings: Settings) -> GradioClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_space), follow_redirects=True)
        return _OwningClient(endpoint, settings=settings, http_client=http_client)

    return _factory


class _OwningClient(GradioClient):
    """GradioClient that also closes an injected transport client."""

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None


@pytest.fixture
def midi_file(tmp_path: Path) -> Path:
    path = tmp_path / "take.mid"
    path.write_bytes(b"MThd-original")
    return path
