from __future__ import annotations

import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from .errors import (
    ACCESS_DENIED,
    FAILED,
    NOT_FOUND,
    THROTTLED,
    TIMEOUT,
    ParameterStoreError,
)
from .logs import log_event

_THROTTLE_CODES = {
    "ThrottlingException",
    "Throttling",
    "TooManyUpdates",
    "RequestLimitExceeded",
}
_ACCESS_DENIED_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnrecognizedClientException",
    "ExpiredTokenException",
}


def error_kind(exc: Exception) -> str:
    # ConnectTimeoutError is an EndpointConnectionError.
    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return TIMEOUT
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return ACCESS_DENIED
    if isinstance(exc, ClientError):
        code = str((exc.response.get("Error") or {}).get("Code") or "")
        if code == "ParameterNotFound":
            return NOT_FOUND
        if code in _ACCESS_DENIED_CODES:
            return ACCESS_DENIED
        if code in _THROTTLE_CODES:
            return THROTTLED
    return FAILED


class ParameterStoreClient:
    """Region-scoped get/put of named string values in SSM Parameter Store.

    Clients are created lazily, one per region, and shared by every thread
    that provisions nodes. Each call is a single remote attempt bounded by
    ``attempt_timeout``; retrying is the caller's decision.
    """

    def __init__(self, session: Any = None, *, attempt_timeout: float = 5.0) -> None:
        self._session = session
        self._attempt_timeout = attempt_timeout
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _client(self, region: str) -> Any:
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                if self._session is None:
                    self._session = boto3.session.Session()
                client = self._session.client(
                    "ssm",
                    region_name=region,
                    config=Config(
                        connect_timeout=self._attempt_timeout,
                        read_timeout=self._attempt_timeout,
                        retries={"max_attempts": 1, "mode": "standard"},
                    ),
                )
                self._clients[region] = client
            return client

    def get(self, region: str, name: str) -> str:
        try:
            resp = self._client(region).get_parameter(Name=name, WithDecryption=True)
        except (ClientError, BotoCoreError) as e:
            raise ParameterStoreError(error_kind(e), region=region, name=name, message=str(e)) from e
        value = (resp.get("Parameter") or {}).get("Value")
        if value is None:
            raise ParameterStoreError(NOT_FOUND, region=region, name=name, message="no value")
        return str(value)

    def put(self, region: str, name: str, value: str, *, overwrite: bool = True) -> None:
        try:
            self._client(region).put_parameter(
                Name=name,
                Value=value,
                Type="String",
                Overwrite=overwrite,
            )
        except (ClientError, BotoCoreError) as e:
            raise ParameterStoreError(error_kind(e), region=region, name=name, message=str(e)) from e
        log_event("parameter_published", region=region, name=name)
