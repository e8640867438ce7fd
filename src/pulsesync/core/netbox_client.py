"""
NetBox REST client (ResourceClient).

- One `requests.Session`; the Authorization header lives on the session so
  every follow-up page request carries it.
- `fetch` follows `next` until exhausted and returns one list of records.
- `write` POSTs (create) or PATCHes (update) a single object and normalizes
  the response (bare object or `results` wrapper) into a record list.
- Errors are classified: TransportError, RequestFailedError, DecodeError.
  No retries; callers decide.

Usage:
    client = NetboxClient("https://netbox.local", token)
    sites = client.fetch(get_operations("sites"))
"""

from __future__ import annotations

import json
import logging
import time
import warnings
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import requests
import urllib3

from .errors import ConfigurationMissingError, DecodeError, RequestFailedError, TransportError
from .records import decode_records
from .registry import EntityOperations

Params = List[Tuple[str, Any]]

_PREVIEW = 200


def _short(text: str, limit: int = _PREVIEW) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _error_message(resp: requests.Response) -> str:
    """Prefer NetBox's `detail`/`error` member, fall back to a body snippet."""
    try:
        body = resp.json()
    except ValueError:
        return _short(resp.text or resp.reason or "")
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            if body.get(key):
                return str(body[key])
    return _short(json.dumps(body))


def _filter_params(filters: Optional[Mapping[str, Any]]) -> Params:
    params: Params = []
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple)):
            params.extend((key, v) for v in value)
        else:
            params.append((key, value))
    return params


def extract_results(payload: Any) -> List[Any]:
    """Normalize a page (`{"results": [...]}`) or a bare object into a list."""
    if isinstance(payload, dict):
        if "results" in payload:
            results = payload["results"]
            if not isinstance(results, list):
                raise DecodeError("'results' must be a list")
            return results
        return [payload]
    raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")


class NetboxClient:
    """Paginated JSON client for the NetBox REST API."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        auth_scheme: str = "Token",
        verify_tls: bool = True,
        timeout_sec: int = 30,
        page_limit: int = 1000,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ConfigurationMissingError("netbox.base_url")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = bool(verify_tls)
        self.timeout = float(timeout_sec)
        self.page_limit = int(page_limit)
        self.log = logger or logging.getLogger("pulse.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "PulseSync/NetboxClient",
        })
        if token:
            self.session.headers["Authorization"] = f"{auth_scheme} {token}"

        if not self.verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def fetch(
        self,
        operations: EntityOperations,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        """Fetch every page of a collection and decode it into property records."""
        params: Params = [("limit", self.page_limit)] + _filter_params(filters)
        url: Optional[str] = self._url(operations.path)
        items: List[Any] = []
        pages = 0
        while url:
            payload = self._request("GET", url, params=params if pages == 0 else None)
            pages += 1
            items.extend(extract_results(payload))
            url = payload.get("next") if isinstance(payload, dict) else None
        self.log.debug("Fetched %s %s record(s) over %s page(s)", len(items), operations.kind, pages)
        return decode_records(items, operations.record_type)

    def write(
        self,
        operations: EntityOperations,
        payload: Dict[str, Any],
        *,
        object_id: Optional[int] = None,
    ) -> List[Any]:
        """Create (POST) or update (PATCH) one object; returns the decoded response records."""
        if object_id is None:
            body = self._request("POST", self._url(operations.path), json_body=payload)
        else:
            body = self._request("PATCH", self._url(f"{operations.path.rstrip('/')}/{object_id}/"), json_body=payload)
        return decode_records(extract_results(body), operations.record_type)

    def close(self) -> None:
        self.session.close()

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Params] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Union[Dict[str, Any], Sequence[Any]]:
        start = time.time()
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            self.log.warning("HTTP %s %s failed: %s", method, url, exc)
            raise TransportError(str(exc), url=url) from exc

        elapsed = (time.time() - start) * 1000
        self.log.debug("HTTP %s %s -> %s (%.1f ms)", method, resp.url, resp.status_code, elapsed)

        if not 200 <= resp.status_code < 300:
            message = _error_message(resp)
            self.log.warning("HTTP %s %s -> %s: %s", method, url, resp.status_code, message)
            raise RequestFailedError(resp.status_code, message, url=url)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise DecodeError(f"non-JSON response from {method} {url}: {_short(resp.text)}") from exc
