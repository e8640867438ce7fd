"""Last request outcome per remote source, for display only."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Dict, Optional

from .errors import (
    ConfigurationMissingError,
    DecodeError,
    JsonRpcError,
    RequestFailedError,
    TransportError,
)


class RequestStatus(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    AUTHENTICATION_FAILURE = "authentication_failure"
    CONNECTION_ERROR = "connection_error"
    DATA_ERROR = "data_error"
    UNKNOWN_ERROR = "unknown_error"


def classify(error: Optional[BaseException]) -> RequestStatus:
    if error is None:
        return RequestStatus.SUCCESS
    if isinstance(error, JsonRpcError):
        if "login" in error.method or "auth" in error.message.lower():
            return RequestStatus.AUTHENTICATION_FAILURE
        return RequestStatus.DATA_ERROR
    if isinstance(error, RequestFailedError):
        if error.status in (401, 403):
            return RequestStatus.AUTHENTICATION_FAILURE
        return RequestStatus.UNKNOWN_ERROR
    if isinstance(error, (TransportError, ConfigurationMissingError)):
        return RequestStatus.CONNECTION_ERROR
    if isinstance(error, DecodeError):
        return RequestStatus.DATA_ERROR
    return RequestStatus.UNKNOWN_ERROR


class RequestStatusTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status: Dict[str, RequestStatus] = {}

    def record(self, source: str, error: Optional[BaseException] = None) -> RequestStatus:
        status = classify(error)
        with self._lock:
            self._status[source] = status
        return status

    def get(self, source: str) -> RequestStatus:
        with self._lock:
            return self._status.get(source, RequestStatus.UNKNOWN)

    def snapshot(self) -> Dict[str, RequestStatus]:
        with self._lock:
            return dict(self._status)
