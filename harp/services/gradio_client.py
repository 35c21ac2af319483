"""Gradio Space RPC client.

Implements the two-phase call/poll protocol spoken by Gradio apps plus file
transfer:

    POST {base}/upload                      multipart ``files`` -> ["<remote path>"]
    POST {base}/call/{endpoint}             {"data": [...]}     -> {"event_id": "..."}
    GET  {base}/call/{endpoint}/{event_id}  long-poll            -> text/event-stream
    GET  {absolute file url}                                     -> bytes

The client is bound to one :class:`EndpointDescriptor` and never mutates it.
It does not retry: transport failures and non-200 statuses surface as
:class:`NetError`, shape mismatches as :class:`ProtocolError`.  Retry policy
belongs to :class:`~harp.services.session.ModelSession`.
"""
from __future__ import annotations

import logging
import mimetypes
import types
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx

from harp.config import Settings, settings as default_settings
from harp.core.address import EndpointDescriptor
from harp.core.controls import ControlSchema, JSONValue
from harp.errors import NetError, ProtocolError, SubmissionError
from harp.services.event_stream import parse_data_payload

logger = logging.getLogger(__name__)

_MIDI_SUFFIXES = (".mid", ".midi")


def _guess_mime_type(path: Path) -> str:
    if path.suffix.lower() in _MIDI_SUFFIXES:
        return "audio/midi"
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _filename_from_url(url: str) -> str:
    """Final path segment of ``url``, decoded, without Gradio's ``file=`` prefix."""
    path = unquote(urlsplit(url).path)
    name = path.rstrip("/").rsplit("/", 1)[-1]
    if name.startswith("file="):
        name = name[len("file="):]
    return name or "download"


def _root_cause(exc: BaseException) -> BaseException:
    """First leaf of a (possibly nested) ExceptionGroup."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


class GradioClient:
    """Async client for one Gradio Space.

    Use as an async context manager, or call :meth:`close` when done::

        async with GradioClient(endpoint) as client:
            schema = await client.fetch_schema()
    """

    def __init__(
        self,
        endpoint: EndpointDescriptor,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._settings = settings or default_settings
        self._base_url = endpoint.canonical_url.rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def endpoint(self) -> EndpointDescriptor:
        return self._endpoint

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "*/*"}
            if self._settings.hf_token:
                headers["Authorization"] = f"Bearer {self._settings.hf_token}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=self._settings.connect_timeout,
                    read=self._settings.read_timeout,
                    write=self._settings.connect_timeout,
                    pool=self._settings.connect_timeout,
                ),
                follow_redirects=True,
                max_redirects=self._settings.max_redirects,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "GradioClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.close()

    # ── low-level request helper ──────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            raise NetError(f"{method} {url} timed out ({type(exc).__name__})", url=url) from exc
        except httpx.HTTPError as exc:
            raise NetError(f"{method} {url} failed: {exc}", url=url) from exc
        except httpx.InvalidURL as exc:
            raise NetError(f"Invalid URL {url}: {exc}", url=url, transient=False) from exc
        except Exception as exc:
            # anyio surfaces socket-level faults (e.g. an out-of-range port) as ExceptionGroups
            raise NetError(
                f"{method} {url} failed: {type(exc).__name__}: {_root_cause(exc)}", url=url, transient=False,
            ) from exc

        if response.status_code != 200:
            raise NetError(
                f"Request to {url} failed with status code: {response.status_code}",
                status_code=response.status_code,
                body=response.text[:1000],
                url=url,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, what: str) -> JSONValue:
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"Failed to parse JSON response from {what}",
                status_code=response.status_code,
                body=response.text[:1000],
            ) from exc

    # ── protocol operations ───────────────────────────────────────────────

    async def upload(self, file_path: str | Path) -> str:
        """Upload a local file; returns the server-side path token."""
        path = Path(file_path)
        if not path.is_file():
            raise SubmissionError(f"Input file not found: {path}")

        url = f"{self._base_url}/upload"
        with path.open("rb") as fh:
            response = await self._request(
                "POST", url, files={"files": (path.name, fh, _guess_mime_type(path))},
            )

        data = self._json(response, "upload")
        if not isinstance(data, list) or not data:
            raise ProtocolError(
                "Upload response does not contain the expected file path",
                status_code=response.status_code,
                body=response.text[:1000],
            )
        remote_path = data[0]
        if not isinstance(remote_path, str) or not remote_path:
            raise ProtocolError("File path not found in the upload response", body=response.text[:1000])

        logger.info("📤 Uploaded %s → %s", path.name, remote_path)
        return remote_path

    async def submit_call(self, endpoint_name: str, data: list[JSONValue] | None = None) -> str:
        """``POST /call/{endpoint}``; returns the event id to poll."""
        url = f"{self._base_url}/call/{endpoint_name}"
        response = await self._request("POST", url, json={"data": data or []})

        body = self._json(response, endpoint_name)
        if not isinstance(body, dict):
            raise ProtocolError(
                f"Parsed JSON is not an object from {endpoint_name}",
                status_code=response.status_code,
                body=response.text[:1000],
            )
        event_id = body.get("event_id")
        if not event_id:
            raise ProtocolError(
                f"event_id not found in the response from {endpoint_name}",
                status_code=response.status_code,
                body=response.text[:1000],
            )
        logger.debug("Call %s accepted: event_id=%s", endpoint_name, event_id)
        return str(event_id)

    async def poll_result(self, endpoint_name: str, event_id: str) -> str:
        """Long-poll ``GET /call/{endpoint}/{event_id}``; returns the raw event-stream body."""
        url = f"{self._base_url}/call/{endpoint_name}/{event_id}"
        response = await self._request("GET", url)
        return response.text

    async def call(self, endpoint_name: str, data: list[JSONValue] | None = None) -> JSONValue:
        """Submit, poll and decode the ``data:`` payload in one step."""
        event_id = await self.submit_call(endpoint_name, data)
        body = await self.poll_result(endpoint_name, event_id)
        return parse_data_payload(body)

    async def fetch_schema(self, endpoint_name: str | None = None) -> ControlSchema:
        """Ask the Space to describe its model card and controls."""
        name = endpoint_name or self._settings.schema_endpoint
        payload = await self.call(name, [])

        if not isinstance(payload, list) or not payload:
            raise ProtocolError("Controls response is not a non-empty array")
        first = payload[0]
        if not isinstance(first, dict):
            raise ProtocolError("First element of the controls response is not an object")

        card = first.get("card")
        if not isinstance(card, dict):
            raise ProtocolError("Couldn't load the model card from the controls response")
        if "tags" in card and not isinstance(card["tags"], list):
            raise ProtocolError("Model card 'tags' is not a list")
        ctrls = first.get("ctrls")
        if not isinstance(ctrls, list):
            raise ProtocolError("Couldn't load the controls array from the controls response")

        schema = ControlSchema.from_payload(card, ctrls)
        logger.info(
            "📋 Loaded schema for '%s': %d control(s)",
            schema.card.name or self._endpoint.canonical_url, len(schema.controls),
        )
        return schema

    # ── files ─────────────────────────────────────────────────────────────

    def file_url(self, remote_path: str) -> str:
        """Absolute download URL for a server-side path."""
        return f"{self._base_url}/{self._settings.file_route}{remote_path}"

    def resolve_output_url(self, output: JSONValue) -> str:
        """Turn a predict output (URL, remote path or FileData object) into a URL."""
        if isinstance(output, str) and output:
            if output.startswith(("http://", "https://")):
                return output
            return self.file_url(output)
        if isinstance(output, dict):
            url = output.get("url")
            if isinstance(url, str) and url:
                return url
            path = output.get("path")
            if isinstance(path, str) and path:
                return self.file_url(path)
        raise ProtocolError(f"Output is not a file reference: {output!r}"[:300])

    async def download_file(
        self,
        url: str,
        dest_dir: str | Path | None = None,
        filename: str | None = None,
    ) -> Path:
        """Stream ``url`` to a local file; returns its path."""
        directory = Path(dest_dir) if dest_dir is not None else self._settings.resolved_temp_dir
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / (filename or _filename_from_url(url))

        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", "replace")
                    raise NetError(
                        f"Download failed with status code: {response.status_code}",
                        status_code=response.status_code,
                        body=body[:1000],
                        url=url,
                    )
                with target.open("wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
        except NetError:
            raise
        except httpx.HTTPError as exc:
            target.unlink(missing_ok=True)
            raise NetError(f"GET {url} failed: {exc}", url=url) from exc
        except httpx.InvalidURL as exc:
            raise NetError(f"Invalid URL {url}: {exc}", url=url, transient=False) from exc
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise SubmissionError(f"Failed to write downloaded file {target}: {exc}") from exc
        except Exception as exc:
            target.unlink(missing_ok=True)
            raise NetError(
                f"GET {url} failed: {type(exc).__name__}: {_root_cause(exc)}", url=url, transient=False,
            ) from exc

        logger.info("📥 Downloaded %s → %s", url, target)
        return target
