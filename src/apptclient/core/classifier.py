"""Maps raw transport failures onto the closed :class:`ErrorKind` set.

:func:`classify_error` is the only place in the library that looks at
engine error codes and raw responses.  Everything downstream branches on
:attr:`ClientError.kind` alone.
"""

import email.utils
import time

from apptclient.core.exceptions import ClientError, TransportFailure
from apptclient.core.models import ErrorKind

NETWORK_ERROR_CODES = frozenset({
    "ENOTFOUND",
    "ECONNREFUSED",
    "ECONNRESET",
    "EHOSTUNREACH",
    "ENETUNREACH",
    "EAI_AGAIN",
    "ERR_NETWORK",
})

TIMEOUT_ERROR_CODES = frozenset({
    "ECONNABORTED",
    "ETIMEDOUT",
    "ERR_TIMEOUT",
})

DEFAULT_RETRY_AFTER_SECONDS = 1.0
MAX_RETRY_AFTER_SECONDS = 300.0

_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "Network error - please check your connection",
    ErrorKind.TIMEOUT: "Request timed out",
    ErrorKind.UNAUTHORIZED: "Unauthorized - please login again",
    ErrorKind.RATE_LIMITED: "Too many requests - please try again later",
    ErrorKind.CLIENT_FAULT: "Request failed",
    ErrorKind.SERVER_FAULT: "Server error occurred. Please try again later.",
    ErrorKind.UNKNOWN: "An unexpected error occurred",
}

_STATUS_MESSAGES: dict[int, str] = {
    400: "Invalid request data",
    403: "You do not have permission to perform this action",
    404: "The requested resource was not found",
    422: "Validation failed",
    500: "Internal server error",
}


def classify_error(error: BaseException) -> ClientError:
    """Classify *error* into a :class:`ClientError`.

    Precedence (first match wins): network code, timeout code, 401, 429,
    other 4xx, 5xx, anything else.  The function never raises and
    returns the same classification for the same input.

    Args:
        error: Any exception.  :class:`TransportFailure` instances are
            inspected for a code and response; a :class:`ClientError` is
            returned unchanged.

    Returns:
        The classified :class:`ClientError`.
    """
    if isinstance(error, ClientError):
        return error

    if isinstance(error, TransportFailure):
        code, request, response = error.code, error.request, error.response
    else:
        code = request = response = None

    url = getattr(request, "url", None)
    method = getattr(request, "method", None)

    status = _status_of(response)
    body = getattr(response, "body", None)

    retry_after = None
    if status is None:
        if code in NETWORK_ERROR_CODES:
            kind = ErrorKind.NETWORK
        elif code in TIMEOUT_ERROR_CODES:
            kind = ErrorKind.TIMEOUT
        else:
            kind = ErrorKind.UNKNOWN
    elif status == 401:
        kind = ErrorKind.UNAUTHORIZED
    elif status == 429:
        kind = ErrorKind.RATE_LIMITED
        retry_after = parse_retry_after(_header(response, "retry-after"))
    elif 400 <= status < 500:
        kind = ErrorKind.CLIENT_FAULT
    elif status >= 500:
        kind = ErrorKind.SERVER_FAULT
    else:
        kind = ErrorKind.UNKNOWN

    return ClientError(
        kind,
        _message_for(kind, status, body),
        status_code=status,
        retry_after_seconds=retry_after,
        url=url,
        method=method,
        details=body,
        cause=error,
    )


def parse_retry_after(value: object) -> float:
    """Parse a ``Retry-After`` header value into seconds.

    Accepts delta-seconds (``"3"``, ``"1.5"``) and HTTP dates.  Missing or
    unparsable values yield :data:`DEFAULT_RETRY_AFTER_SECONDS`; values in
    the past clamp to ``0`` and delays beyond
    :data:`MAX_RETRY_AFTER_SECONDS` are capped to it.

    Args:
        value: The raw header value, or ``None``.

    Returns:
        The delay in seconds.
    """
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    text = str(value).strip()
    if not text:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = float(text)
    except ValueError:
        try:
            when = email.utils.parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return DEFAULT_RETRY_AFTER_SECONDS
        if when is None:
            return DEFAULT_RETRY_AFTER_SECONDS
        seconds = when.timestamp() - time.time()
    if seconds != seconds or seconds == float("inf"):  # NaN / inf
        return DEFAULT_RETRY_AFTER_SECONDS
    return min(max(seconds, 0.0), MAX_RETRY_AFTER_SECONDS)


# -------------------------
# Internal helpers
# -------------------------


def _status_of(response: object) -> int | None:
    status = getattr(response, "status_code", None)
    if isinstance(status, bool) or not isinstance(status, int):
        return None
    return status


def _header(response: object, name: str) -> object:
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        return headers.get(name)
    except (AttributeError, TypeError):
        return None


def _message_for(kind: ErrorKind, status: int | None, body: object) -> str:
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    if kind is ErrorKind.CLIENT_FAULT and status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if kind is ErrorKind.SERVER_FAULT and status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if kind is ErrorKind.UNKNOWN and status is not None:
        return f"HTTP {status} error"
    return _DEFAULT_MESSAGES[kind]
