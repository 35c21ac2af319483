"""Exception types and the CLI exit-code contract.

Every error raised by the core derives from :class:`HarpError` and carries a
``user_message`` suitable for display, plus a ``retryable`` hint and the exit
code the ``harp`` CLI maps it to.
"""
from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad address, bad control value, missing file)
    3 — remote / network / protocol error
    130 — cancelled by the user
    """

    SUCCESS = 0
    USER_ERROR = 1
    REMOTE_ERROR = 3
    CANCELLED = 130


class HarpError(Exception):
    """Base exception for HARP client errors."""

    retryable: bool = False
    exit_code: ExitCode = ExitCode.REMOTE_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return self.message


class AddressErrorKind(str, enum.Enum):
    MALFORMED_HUGGINGFACE_URL = "malformed_huggingface_url"
    MALFORMED_GRADIO_URL = "malformed_gradio_url"
    MALFORMED_SHORTHAND = "malformed_shorthand"
    UNRECOGNIZED_FORMAT = "unrecognized_format"


class AddressError(HarpError):
    """The user-supplied Space address could not be resolved. Fix the input."""

    exit_code = ExitCode.USER_ERROR

    def __init__(self, kind: AddressErrorKind, address: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.address = address


class NetError(HarpError):
    """Connection failure, timeout or non-200 HTTP status.

    ``status_code`` is ``None`` when no response was received at all.
    ``transient=False`` marks a request that can never succeed as sent
    (a malformed URL, an impossible port).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        url: str = "",
        transient: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.url = url
        self._transient = transient

    @property
    def transient(self) -> bool:
        """True for failures worth retrying: no response, 429 or 5xx."""
        if self._transient is not None:
            return self._transient
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.transient

    @property
    def user_message(self) -> str:
        if self.status_code is None:
            return f"Could not reach the Space: {self.message}"
        return f"The Space returned HTTP {self.status_code}: {self.message}"


class ProtocolError(HarpError):
    """The response did not have the expected shape (server/version mismatch)."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def user_message(self) -> str:
        return f"Unexpected response from the Space: {self.message}"


class RemoteJobError(HarpError):
    """The Space accepted the call but its app raised while processing it."""

    @property
    def user_message(self) -> str:
        return f"The Space failed to process the request: {self.message}"


class SchemaError(HarpError):
    """A control record of a known type is missing a field or violates its bounds."""

    def __init__(
        self,
        message: str,
        *,
        index: int,
        field: str | None,
        ctrl_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.index = index
        self.field = field
        self.ctrl_type = ctrl_type

    @property
    def user_message(self) -> str:
        where = f"control #{self.index}"
        if self.ctrl_type:
            where += f" ({self.ctrl_type})"
        if self.field:
            where += f", field '{self.field}'"
        return f"Invalid control schema at {where}: {self.message}"


class SubmissionError(HarpError):
    """A job could not be assembled, uploaded or its result relocated."""

    exit_code = ExitCode.USER_ERROR

    @property
    def user_message(self) -> str:
        return f"Processing failed: {self.message}"
