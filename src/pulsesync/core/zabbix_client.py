"""
Zabbix JSON-RPC 2.0 client.

Every call is a POST of ``{"jsonrpc": "2.0", "method", "params", "id": 1}``.
``user.login`` goes out without credentials and its result (the session
token) is then sent as ``Authorization: Bearer <token>`` on every other call.
A ``result`` member is returned; an ``error`` member raises JsonRpcError.
"""

from __future__ import annotations

import logging
import threading
import time
import warnings
from typing import Any, Dict, Iterable, List, Optional

import requests
import urllib3

from .errors import ConfigurationMissingError, DecodeError, JsonRpcError, RequestFailedError, TransportError
from .records import ProblemRecord, decode_records

_LOGIN = "user.login"
_SESSION_MARKERS = ("re-login", "session terminated", "not authorized", "session expired")


def _is_session_error(err: JsonRpcError) -> bool:
    text = f"{err.message} {err.data or ''}".lower()
    return any(marker in text for marker in _SESSION_MARKERS)


class ZabbixClient:
    def __init__(
        self,
        base_url: str,
        user: str,
        password: str,
        *,
        api_path: str = "zabbix/api_jsonrpc.php",
        verify_tls: bool = True,
        timeout_sec: int = 30,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ConfigurationMissingError("zabbix.base_url")
        if not user:
            raise ConfigurationMissingError("zabbix.user")
        if not password:
            raise ConfigurationMissingError("zabbix.password")
        self.url = f"{base_url.rstrip('/')}/{api_path.lstrip('/')}"
        self.user = user
        self._password = password
        self.verify_tls = bool(verify_tls)
        self.timeout = float(timeout_sec)
        self.log = logger or logging.getLogger("pulse.zabbix")
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json-rpc"})
        self._token: Optional[str] = None
        self._token_lock = threading.Lock()

        if not self.verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Session -------------

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def login(self) -> str:
        token = self._post(_LOGIN, {"username": self.user, "password": self._password}, token=None)
        if not isinstance(token, str) or not token:
            raise DecodeError("user.login did not return a session token")
        self._token = token
        self.log.info("Zabbix session opened for user %s", self.user)
        return token

    def logout(self) -> None:
        if self._token is None:
            return
        try:
            self._post("user.logout", [], token=self._token)
        finally:
            self._token = None

    def _session_token(self) -> str:
        with self._token_lock:
            if self._token is None:
                self.login()
            return self._token  # type: ignore[return-value]

    # ------------- Calls -------------

    def call(self, method: str, params: Any) -> Any:
        """Invoke `method`; logs in lazily and once more if the session expired."""
        if method == _LOGIN:
            return self._post(method, params, token=None)
        token = self._session_token()
        try:
            return self._post(method, params, token=token)
        except JsonRpcError as err:
            if not _is_session_error(err):
                raise
            self.log.info("Zabbix session rejected (%s), logging in again", err.message)
            with self._token_lock:
                if self._token == token:
                    self._token = None
            return self._post(method, params, token=self._session_token())

    def get_problems(
        self,
        *,
        host_ids: Optional[Iterable[int]] = None,
        event_ids: Optional[Iterable[int]] = None,
    ) -> List[ProblemRecord]:
        params: Dict[str, Any] = {
            "output": "extend",
            "selectHosts": ["hostid"],
            "sortfield": ["eventid"],
            "sortorder": "DESC",
            "recent": True,
        }
        if host_ids is not None:
            params["hostids"] = [str(h) for h in host_ids]
        if event_ids is not None:
            params["eventids"] = [str(e) for e in event_ids]
        result = self.call("problem.get", params)
        if not isinstance(result, list):
            raise DecodeError("problem.get must return a list")
        return decode_records(result, ProblemRecord)

    def get_events(
        self,
        host_ids: Iterable[int],
        *,
        time_from: Optional[int] = None,
        time_till: Optional[int] = None,
        window_sec: int = 3600,
    ) -> List[Dict[str, Any]]:
        """Raw events for hosts within a problem time window (default: the last `window_sec`)."""
        till = int(time_till if time_till is not None else time.time())
        since = int(time_from if time_from is not None else till - window_sec)
        result = self.call("event.get", {
            "output": "extend",
            "selectHosts": ["hostid"],
            "hostids": [str(h) for h in host_ids],
            "problem_time_from": since,
            "problem_time_till": till,
        })
        if not isinstance(result, list):
            raise DecodeError("event.get must return a list")
        return result

    def acknowledge(
        self,
        event_ids: Iterable[int],
        action: int,
        *,
        message: Optional[str] = None,
        severity: Optional[int] = None,
        suppress_until: Optional[int] = None,
    ) -> List[int]:
        params: Dict[str, Any] = {"eventids": [str(e) for e in event_ids], "action": int(action)}
        if message is not None:
            params["message"] = message
        if severity is not None:
            params["severity"] = int(severity)
        if suppress_until is not None:
            params["suppress_until"] = int(suppress_until)
        result = self.call("event.acknowledge", params)
        ids = result.get("eventids", []) if isinstance(result, dict) else []
        return [int(e) for e in ids]

    # ------------- Internal -------------

    def _post(self, method: str, params: Any, *, token: Optional[str]) -> Any:
        envelope = {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}
        headers = {"Authorization": f"Bearer {token}"} if token else None
        start = time.time()
        try:
            resp = self.session.post(
                self.url,
                json=envelope,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            self.log.warning("JSON-RPC %s failed: %s", method, exc)
            raise TransportError(str(exc), url=self.url) from exc

        self.log.debug("JSON-RPC %s -> %s (%.1f ms)", method, resp.status_code, (time.time() - start) * 1000)
        if not 200 <= resp.status_code < 300:
            raise RequestFailedError(resp.status_code, (resp.text or resp.reason or "")[:200], url=self.url)

        try:
            body = resp.json()
        except ValueError as exc:
            raise DecodeError(f"non-JSON response to {method}") from exc
        if not isinstance(body, dict):
            raise DecodeError(f"unexpected JSON-RPC response to {method}")

        if "error" in body:
            err = body.get("error") or {}
            raise JsonRpcError(
                int(err.get("code", 0)),
                str(err.get("message", "")),
                data=err.get("data"),
                method=method,
                url=self.url,
            )
        if "result" not in body:
            raise DecodeError(f"JSON-RPC response to {method} has neither result nor error")
        return body["result"]
