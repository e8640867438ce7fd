"""
Error taxonomy for PulseSync.

Every failure a sync pass can report derives from :class:`SyncError` and may
carry the entity ``kind`` it was raised for. The reconciler tags errors with
the kind; the orchestrator turns them into per-kind results.

    SyncError
      TransportError            network / connection failure
      RequestFailedError        non-2xx HTTP status
        JsonRpcError            JSON-RPC "error" member
      DecodeError               invalid JSON, page shape or record
      RelationshipError         linking one record failed (kind + id)
      SaveError                 local store load/flush/commit failed
      ConfigurationMissingError empty URL or credential
"""

from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base class of all classified sync failures."""

    category = "error"

    def __init__(self, message: str = "", *, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        prefix = f"[{self.kind}] " if self.kind else ""
        return f"{prefix}{self.category}: {self.message}"


class TransportError(SyncError):
    category = "network failure"

    def __init__(self, message: str, *, url: str = "", kind: Optional[str] = None) -> None:
        super().__init__(message, kind=kind)
        self.url = url


class RequestFailedError(SyncError):
    category = "request failed"

    def __init__(
        self,
        status: int,
        message: str,
        *,
        url: str = "",
        kind: Optional[str] = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.status = int(status)
        self.url = url

    def __str__(self) -> str:
        prefix = f"[{self.kind}] " if self.kind else ""
        return f"{prefix}{self.category} (status={self.status}): {self.message}"


class JsonRpcError(RequestFailedError):
    category = "json-rpc error"

    def __init__(
        self,
        code: int,
        message: str,
        *,
        data: Any = None,
        method: str = "",
        url: str = "",
        kind: Optional[str] = None,
    ) -> None:
        # JSON-RPC errors travel inside a 200 response
        super().__init__(200, message, url=url, kind=kind)
        self.code = int(code)
        self.data = data
        self.method = method

    def __str__(self) -> str:
        prefix = f"[{self.kind}] " if self.kind else ""
        text = f"{prefix}{self.category} {self.method} (code={self.code}): {self.message}"
        if self.data:
            text += f" ({self.data})"
        return text


class DecodeError(SyncError):
    category = "decode failure"


class RelationshipError(SyncError):
    category = "relationship mapping failed"

    def __init__(self, kind: str, record_id: Any, message: str = "") -> None:
        super().__init__(message or f"could not link record id={record_id}", kind=kind)
        self.record_id = record_id


class SaveError(SyncError):
    category = "save failed"


class ConfigurationMissingError(SyncError):
    category = "configuration missing"

    def __init__(self, setting: str, *, kind: Optional[str] = None) -> None:
        super().__init__(f"'{setting}' is not configured", kind=kind)
        self.setting = setting
