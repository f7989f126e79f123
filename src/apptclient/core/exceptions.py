"""Exceptions raised by the apptclient library."""

from apptclient.core.models import ErrorKind, RequestConfig, Response


class ApptClientError(Exception):
    """Base class for all apptclient library exceptions."""


class ClientError(ApptClientError):
    """The single, normalised error surfaced to callers of the client.

    Every failure that escapes :class:`~apptclient.transport.client.Transport`
    is one of these, so callers only ever need to branch on :attr:`kind`.
    Instances are read-only once constructed.

    Args:
        kind: The :class:`~apptclient.core.models.ErrorKind` of the failure.
        message: Human-readable description.
        status_code: HTTP status, when a response was received.
        retry_after_seconds: Server backoff hint.  Only set for
            :attr:`ErrorKind.RATE_LIMITED`.
        url: URL of the request that failed.
        method: HTTP method of the request that failed.
        details: Decoded response body, if any.
        cause: The exception that was classified into this error.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
        url: str | None = None,
        method: str | None = None,
        details: object = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self._kind = kind
        self._message = message
        self._status_code = status_code
        self._retry_after_seconds = (
            retry_after_seconds if kind is ErrorKind.RATE_LIMITED else None
        )
        self._url = url
        self._method = method
        self._details = details
        self._cause = cause

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def retry_after_seconds(self) -> float | None:
        return self._retry_after_seconds

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def method(self) -> str | None:
        return self._method

    @property
    def details(self) -> object:
        return self._details

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    def __repr__(self) -> str:
        return (
            f"ClientError(kind={self._kind.value!r}, "
            f"status_code={self._status_code!r}, "
            f"method={self._method!r}, url={self._url!r}, "
            f"message={self._message!r})"
        )


class TransportFailure(ApptClientError):
    """Raw failure produced by an HTTP engine or by status validation.

    This is the only error shape the classifier inspects.  It never
    reaches callers: :class:`~apptclient.transport.client.Transport`
    converts it to a :class:`ClientError` before re-raising.

    Args:
        message: Description of the failure.
        code: Engine-neutral error code (``"ECONNREFUSED"``,
            ``"ETIMEDOUT"``, ``"ERR_BAD_RESPONSE"``, ...).
        request: The request that was being sent.
        response: The response, when the server answered with a
            non-2xx status.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        request: RequestConfig | None = None,
        response: Response | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.request = request
        self.response = response


class CredentialStoreError(ApptClientError):
    """Raised when tokens cannot be written to or removed from storage.

    Reads never raise this; a failed read is reported as a missing token.
    A failed clear is never ignored because it would leave stale
    credentials behind.
    """


class StorageError(ApptClientError):
    """Raised by a key/value storage backend that cannot be accessed."""


class ConfigurationError(ApptClientError):
    """Raised when environment configuration cannot be parsed."""
