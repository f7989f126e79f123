"""Resilient async HTTP client for the appointment platform API."""

from apptclient.client import ApiClient, build_client
from apptclient.core.exceptions import ApptClientError, ClientError
from apptclient.core.models import ErrorKind, FormData

__all__ = [
    "ApiClient",
    "ApptClientError",
    "ClientError",
    "ErrorKind",
    "FormData",
    "build_client",
]
