"""Data model shared by the transport, classifier and interceptors."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from requests.structures import CaseInsensitiveDict


# ----------------------
# Error taxonomy
# ----------------------


class ErrorKind(str, Enum):
    """Closed set of failure categories reported to callers."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    CLIENT_FAULT = "client_fault"
    SERVER_FAULT = "server_fault"
    UNKNOWN = "unknown"


# ----------------------
# Request
# ----------------------


@dataclass
class FormData:
    """Multipart form body for :meth:`Transport.upload`."""

    fields: dict[str, str] = field(default_factory=dict)
    """Plain form fields."""

    files: dict[str, Any] = field(default_factory=dict)
    """File parts.  Values are file objects, bytes, or
    ``(filename, content[, content_type])`` tuples."""


@dataclass
class RequestConfig:
    """Description of one outgoing request.

    Request interceptors receive this object and may mutate it or return
    a replacement.  The same object travels with any failure so that a
    response interceptor can replay it.
    """

    method: str
    url: str
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    params: dict[str, Any] | None = None
    data: Any = None
    """JSON-serialisable body, raw ``str``/``bytes``, or :class:`FormData`."""

    timeout: float | None = None
    """Timeout in seconds.  ``None`` uses the engine default."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Free-form markers set by interceptors (e.g. replay flags).  Never
    sent over the wire."""

    def __post_init__(self):
        self.method = self.method.upper()
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})


# ----------------------
# Response
# ----------------------


@dataclass
class Response:
    """A decoded HTTP response."""

    status_code: int
    headers: CaseInsensitiveDict
    body: Any
    """Decoded JSON when the server declared a JSON content type,
    otherwise the response text (``None`` for an empty body)."""

    request: RequestConfig | None = None

    def __post_init__(self):
        if not isinstance(self.headers, CaseInsensitiveDict):
            self.headers = CaseInsensitiveDict(self.headers or {})

    @property
    def ok(self) -> bool:
        """``True`` for 2xx status codes."""
        return 200 <= self.status_code < 300
