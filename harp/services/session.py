"""Model session — one connection to one Space and its job lifecycle.

A host constructs one ``ModelSession`` per active model connection (there is
no global instance), loads a schema, lets the user edit control values, and
submits jobs::

    session = ModelSession()
    await session.load_schema("owner/repo")
    session.set_control_value(ctrl_id, 0.7)
    task = session.start_submit("take.mid")   # runs off the caller's path
    ...
    session.cancel()                          # cooperative, idempotent
    result = await task

Status flows through :mod:`harp.core.status`.  The session is the error
aggregation boundary: ``load_schema`` re-raises the typed error after
recording it, ``submit`` never raises for lower-level failures — it settles
as ERROR with :attr:`ModelSession.error` set, or as CANCELLED.

Cancellation replaces the legacy cancel flag file with an ``asyncio.Event``.
The long poll runs as its own task and is raced against that event, so a
cancel settles the job immediately.  The remote Space may still finish the
job; its result is discarded.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from harp.config import Settings, settings as default_settings
from harp.core.address import EndpointDescriptor, resolve_address
from harp.core.controls import Control, ControlSchema, JSONValue, ModelCard, serialize_values
from harp.core.status import (
    InvalidTransitionError,
    SessionStatus,
    assert_transition,
    can_load,
    can_submit,
)
from harp.errors import HarpError, NetError, ProtocolError, SubmissionError
from harp.services.event_stream import parse_data_payload
from harp.services.gradio_client import GradioClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[EndpointDescriptor, Settings], GradioClient]


def _default_client_factory(endpoint: EndpointDescriptor, settings: Settings) -> GradioClient:
    return GradioClient(endpoint, settings=settings)


class _JobCancelled(Exception):
    """Internal: the cancel signal was observed at a checkpoint."""


@dataclass
class JobResult:
    """Outcome of one submission."""

    status: SessionStatus
    token: str
    output_path: Path | None = None
    error: str | None = None
    raw_outputs: list[JSONValue] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is SessionStatus.DONE


@dataclass
class _PreparedJob:
    token: str
    input_file: Path
    output_path: Path
    controls: list[Control]
    started: float


class ModelSession:
    """Owns one resolved endpoint, its control schema and the job lifecycle."""

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._client_factory = client_factory or _default_client_factory
        self._status = SessionStatus.INACTIVE
        self._endpoint: EndpointDescriptor | None = None
        self._schema: ControlSchema | None = None
        self._error: str | None = None
        self._last_result: JobResult | None = None
        self._cancel_event = asyncio.Event()
        # Guards control edits against the submit-time snapshot
        self._controls_lock = threading.Lock()
        self._transition(SessionStatus.INITIALIZED)

    # ── observable surface ────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def error(self) -> str | None:
        """User-displayable message of the last failure, if any."""
        return self._error

    @property
    def endpoint(self) -> EndpointDescriptor | None:
        return self._endpoint

    @property
    def schema(self) -> ControlSchema | None:
        return self._schema

    @property
    def controls(self) -> list[Control]:
        return self._schema.controls if self._schema else []

    @property
    def card(self) -> ModelCard | None:
        return self._schema.card if self._schema else None

    @property
    def ready(self) -> bool:
        return self._schema is not None and can_submit(self._status)

    @property
    def space_url(self) -> str | None:
        return self._endpoint.display_url if self._endpoint else None

    @property
    def last_result(self) -> JobResult | None:
        return self._last_result

    @property
    def cancel_requested(self) -> bool:
        """True once cancel() was called for the job in flight."""
        return self._cancel_event.is_set() and self._status is SessionStatus.RUNNING

    def _transition(self, to_state: SessionStatus) -> None:
        assert_transition(self._status, to_state)
        if to_state is not self._status:
            logger.info("Session status %s → %s", self._status.value, to_state.value)
        self._status = to_state

    # ── schema ────────────────────────────────────────────────────────────

    async def load_schema(self, address: str) -> ControlSchema:
        """Resolve ``address``, fetch its schema and move to LOADED.

        On failure the session stays INITIALIZED with :attr:`error` set and
        the typed error (AddressError, NetError, ProtocolError, SchemaError,
        RemoteJobError) is re-raised.  Call again to retry.
        """
        if not can_load(self._status):
            raise InvalidTransitionError(self._status, SessionStatus.INITIALIZED)

        self._transition(SessionStatus.INITIALIZED)
        self._endpoint = None
        self._schema = None
        self._error = None

        try:
            endpoint = resolve_address(address)
            client = self._client_factory(endpoint, self._settings)
            try:
                schema = await self._with_retry(
                    "fetch schema",
                    lambda: client.fetch_schema(self._settings.schema_endpoint),
                )
            finally:
                await client.close()
        except HarpError as exc:
            self._error = exc.user_message
            logger.error("❌ Failed to load %r: %s", address, exc.user_message)
            raise
        except Exception as exc:
            logger.exception("❌ Failed to load %r unexpectedly", address)
            error = HarpError(f"Could not load {address}: unexpected {type(exc).__name__}: {exc}")
            self._error = error.user_message
            raise error from exc

        self._endpoint = endpoint
        self._schema = schema
        self._transition(SessionStatus.LOADED)
        logger.info("✅ Loaded %s (%s)", schema.card.name or endpoint.canonical_url, endpoint.display_url)
        return schema

    def set_control_value(self, control_id: str, value: Any) -> Control:
        """Validated write-back of one control value (safe from a UI thread)."""
        if self._schema is None:
            raise KeyError(control_id)
        with self._controls_lock:
            return self._schema.set_value(control_id, value)

    # ── submission ────────────────────────────────────────────────────────

    def cancel(self) -> None:
        """Request cancellation of the in-flight job. Idempotent; no effect unless RUNNING.

        Call on the event loop thread; other threads go through
        ``loop.call_soon_threadsafe(session.cancel)``.
        """
        if not self._cancel_event.is_set():
            logger.info("🛑 Cancel requested (status=%s)", self._status.value)
        self._cancel_event.set()

    def _prepare(self, input_file: str | Path, output_path: str | Path | None) -> _PreparedJob:
        if self._schema is None or self._endpoint is None or not can_submit(self._status):
            raise InvalidTransitionError(self._status, SessionStatus.RUNNING)

        self._cancel_event.clear()
        with self._controls_lock:
            controls = self._schema.snapshot()
        source = Path(input_file)
        job = _PreparedJob(
            token=uuid.uuid4().hex,
            input_file=source,
            output_path=Path(output_path) if output_path is not None else source,
            controls=controls,
            started=time.monotonic(),
        )
        self._error = None
        self._transition(SessionStatus.RUNNING)
        return job

    async def submit(self, input_file: str | Path, output_path: str | Path | None = None) -> JobResult:
        """Run one job to completion and return its outcome.

        ``output_path`` defaults to ``input_file``: the processed file
        replaces the input, as hosts expect.  Raises only
        ``InvalidTransitionError`` (no schema loaded, or a job is already
        running); every other failure is reported through the result.
        """
        job = self._prepare(input_file, output_path)
        return await self._run(job)

    def start_submit(
        self, input_file: str | Path, output_path: str | Path | None = None,
    ) -> "asyncio.Task[JobResult]":
        """Schedule :meth:`submit` as a task; the session is RUNNING on return.

        Must be called with a running event loop; without one it raises
        ``RuntimeError`` and the session state is unchanged.
        """
        asyncio.get_running_loop()
        job = self._prepare(input_file, output_path)
        return asyncio.create_task(self._run(job), name=f"harp-job-{job.token[:8]}")

    def _checkpoint(self, where: str) -> None:
        if self._cancel_event.is_set():
            logger.info("Cancel observed %s", where)
            raise _JobCancelled()

    async def _run(self, job: _PreparedJob) -> JobResult:
        assert self._endpoint is not None
        temp_dir = self._settings.resolved_temp_dir
        suffix = job.input_file.suffix
        temp_input = temp_dir / f"input_{job.token}{suffix}"
        temp_output: Path | None = None
        raw_outputs: list[JSONValue] = []

        client = self._client_factory(self._endpoint, self._settings)
        try:
            self._checkpoint("before upload")
            try:
                temp_dir.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(job.input_file, temp_input)
            except OSError as exc:
                raise SubmissionError(f"Could not read input file {job.input_file}: {exc}") from exc

            remote_path = await self._with_retry("upload", lambda: client.upload(temp_input))
            self._checkpoint("after upload")

            data = serialize_values(job.controls, remote_path)
            event_id = await client.submit_call(self._settings.predict_endpoint, data)
            body = await self._await_unless_cancelled(
                client.poll_result(self._settings.predict_endpoint, event_id)
            )
            self._checkpoint("after poll")

            payload = parse_data_payload(body)
            raw_outputs = payload if isinstance(payload, list) else [payload]
            if not raw_outputs:
                raise ProtocolError("predict returned no outputs")
            url = client.resolve_output_url(raw_outputs[0])

            temp_output = await self._with_retry(
                "download",
                lambda: client.download_file(
                    url, dest_dir=temp_dir, filename=f"output_{job.token}{suffix}",
                ),
            )
            self._checkpoint("before relocation")
            self._relocate(temp_output, job.output_path)
            temp_output = None

        except _JobCancelled:
            return self._settle(job, SessionStatus.CANCELLED, raw_outputs=raw_outputs)
        except asyncio.CancelledError:
            # the host cancelled the worker task itself
            self._settle(job, SessionStatus.CANCELLED, raw_outputs=raw_outputs)
            raise
        except HarpError as exc:
            logger.error("❌ Job %s failed: %s", job.token[:8], exc.user_message)
            return self._settle(job, SessionStatus.ERROR, error=exc.user_message)
        except Exception as exc:
            logger.exception("❌ Job %s failed unexpectedly", job.token[:8])
            message = SubmissionError(f"unexpected {type(exc).__name__}: {exc}").user_message
            return self._settle(job, SessionStatus.ERROR, error=message)
        finally:
            await client.close()
            temp_input.unlink(missing_ok=True)
            if temp_output is not None:
                temp_output.unlink(missing_ok=True)

        return self._settle(
            job, SessionStatus.DONE, output_path=job.output_path, raw_outputs=raw_outputs,
        )

    async def _await_unless_cancelled(self, coro: Awaitable[T]) -> T:
        """Await ``coro`` as a task; a cancel seen before its result is taken wins."""
        work = asyncio.ensure_future(coro)
        cancel_wait = asyncio.create_task(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            cancel_wait.cancel()
        if work in done and not self._cancel_event.is_set():
            return work.result()
        work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception) as exc:
            logger.debug("Abandoned poll ended with %s", type(exc).__name__)
        raise _JobCancelled()

    @staticmethod
    def _relocate(source: Path, destination: Path) -> None:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(destination))
        except OSError as exc:
            raise SubmissionError(f"Could not move output to {destination}: {exc}") from exc
        logger.info("💾 Output written to %s", destination)

    def _settle(
        self,
        job: _PreparedJob,
        status: SessionStatus,
        *,
        output_path: Path | None = None,
        error: str | None = None,
        raw_outputs: list[JSONValue] | None = None,
    ) -> JobResult:
        self._error = error
        self._transition(status)
        result = JobResult(
            status=status,
            token=job.token,
            output_path=output_path,
            error=error,
            raw_outputs=raw_outputs or [],
            duration_s=time.monotonic() - job.started,
        )
        self._last_result = result
        return result

    # ── retry policy ──────────────────────────────────────────────────────

    async def _with_retry(self, what: str, op: Callable[[], Awaitable[T]]) -> T:
        """Run ``op`` with bounded retry on transient network errors."""
        attempts = self._settings.retry_attempts
        for attempt in range(attempts):
            try:
                return await op()
            except NetError as exc:
                if not exc.transient or attempt >= attempts - 1:
                    raise
                delay = self._settings.backoff_for(attempt)
                logger.warning(
                    f"⚠️ {what} failed (attempt {attempt + 1}/{attempts}): "
                    f"{exc.user_message} — retrying in {delay}s"
                )
                if self._cancel_event.is_set() and self._status is SessionStatus.RUNNING:
                    raise _JobCancelled() from exc
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
