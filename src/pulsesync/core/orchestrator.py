"""
SyncOrchestrator: per-kind passes, the concurrent batch, write-back and problems.

- Each kind owns a `threading.Lock`; a pass holds it from fetch to commit so two
  passes over the same kind never interleave. Different kinds run freely.
- `sync_all` runs kinds on a bounded ThreadPoolExecutor and returns one
  SyncResult per kind; a failing kind never cancels its siblings.
- Write-back pushes one record and reconciles the response without pruning.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .config import AppConfig
from .errors import SaveError, SyncError
from .logging_setup import with_context
from .models import Device
from .netbox_client import NetboxClient
from .reconciler import COUNT_KEYS, EntityReconciler
from .records import DeviceDraft, SiteDraft
from .registry import ASSET_KINDS, EntityOperations, get_operations, kind_names
from .status import RequestStatusTracker
from .store import LocalStore
from .zabbix_client import ZabbixClient

OK = "OK"
FAILED = "FAILED"
SKIPPED = "SKIPPED"
CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class SyncResult:
    kind: str
    status: str
    counts: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in COUNT_KEYS})
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status in (OK, SKIPPED)

    def summary(self) -> str:
        parts = [f"{k}={self.counts.get(k, 0)}" for k in COUNT_KEYS]
        line = f"{self.kind}: {self.status} | " + " | ".join(parts)
        if self.error is not None:
            line += f" | error={self.error}"
        return line


def _chunks(items: Sequence[int], size: int) -> Iterable[Sequence[int]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SyncOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        store: LocalStore,
        *,
        netbox: Optional[NetboxClient] = None,
        zabbix: Optional[ZabbixClient] = None,
        logger: Optional[logging.LoggerAdapter] = None,
        status: Optional[RequestStatusTracker] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.log = logger or logging.getLogger("pulse.sync")
        self.status = status or RequestStatusTracker()
        self.reconciler = EntityReconciler(store, logger=self.log)

        self._netbox = netbox
        self._zabbix = zabbix
        self._client_lock = threading.Lock()

        self._locks: Dict[str, threading.Lock] = {kind: threading.Lock() for kind in kind_names()}
        self._active: Dict[str, int] = {}
        self._active_lock = threading.Lock()
        self._cancelled = threading.Event()

    # ------------- Clients -------------

    @property
    def netbox(self) -> NetboxClient:
        with self._client_lock:
            if self._netbox is None:
                nb = self.config.netbox
                self._netbox = NetboxClient(
                    nb.base_url,
                    nb.token,
                    auth_scheme=nb.auth_scheme,
                    verify_tls=nb.verify_tls,
                    timeout_sec=nb.timeout_sec,
                    page_limit=nb.page_limit,
                    logger=with_context(self.log, source="netbox"),
                )
            return self._netbox

    @property
    def zabbix(self) -> ZabbixClient:
        with self._client_lock:
            if self._zabbix is None:
                zb = self.config.zabbix
                self._zabbix = ZabbixClient(
                    zb.base_url,
                    zb.user,
                    zb.password,
                    api_path=zb.api_path,
                    verify_tls=zb.verify_tls,
                    timeout_sec=zb.timeout_sec,
                    logger=with_context(self.log, source="zabbix"),
                )
            return self._zabbix

    # ------------- Observational state -------------

    def is_syncing(self, kind: str) -> bool:
        with self._active_lock:
            return self._active.get(kind, 0) > 0

    def active_kinds(self) -> List[str]:
        with self._active_lock:
            return sorted(k for k, n in self._active.items() if n > 0)

    @property
    def is_loading_problems(self) -> bool:
        return self.is_syncing("problems")

    def _mark(self, kind: str, delta: int) -> None:
        with self._active_lock:
            self._active[kind] = self._active.get(kind, 0) + delta

    # ------------- Cancellation -------------

    def cancel(self) -> None:
        """Stop launching passes that have not started yet; running passes finish."""
        self._cancelled.set()

    def reset_cancel(self) -> None:
        self._cancelled.clear()

    # ------------- Per-kind pass -------------

    def sync_kind(
        self,
        kind: str,
        records: Optional[Sequence[Any]] = None,
        *,
        wait: bool = True,
        dry_run: Optional[bool] = None,
    ) -> SyncResult:
        """
        Reconcile one kind: `records` when given (no pruning), else a full fetch.

        Classified failures are returned as a FAILED result, never raised.
        """
        operations = get_operations(kind)
        if self._cancelled.is_set():
            return SyncResult(kind, CANCELLED)

        lock = self._locks[kind]
        if not lock.acquire(blocking=wait):
            self.log.info("%s: a pass is already running, skipped", kind)
            return SyncResult(kind, SKIPPED)
        self._mark(kind, +1)
        try:
            return self._run_pass(operations, records, dry_run)
        finally:
            self._mark(kind, -1)
            lock.release()

    def _run_pass(
        self,
        operations: EntityOperations,
        records: Optional[Sequence[Any]],
        dry_run: Optional[bool],
    ) -> SyncResult:
        kind = operations.kind
        log = with_context(self.log, kind=kind, source=operations.source)
        dry = self.config.app.dry_run if dry_run is None else bool(dry_run)
        fetch = None if records is not None else self._fetcher(operations)
        try:
            report = self.reconciler.reconcile(operations, records, fetch=fetch, dry_run=dry, logger=log)
        except SyncError as exc:
            exc.kind = exc.kind or kind
            log.error("%s pass failed: %s", kind, exc)
            return SyncResult(kind, FAILED, error=exc)
        return SyncResult(kind, OK, counts=dict(report.counts))

    def _fetcher(self, operations: EntityOperations) -> Callable[[], List[Any]]:
        if operations.source == "zabbix":
            return self._fetch_all_problems

        def fetch() -> List[Any]:
            filters = (self.config.netbox.filters or {}).get(operations.kind)
            return self._tracked("netbox", lambda: self.netbox.fetch(operations, filters))

        return fetch

    def _tracked(self, source: str, call: Callable[[], Any]) -> Any:
        try:
            result = call()
        except SyncError as exc:
            self.status.record(source, exc)
            raise
        self.status.record(source)
        return result

    # ------------- Batch -------------

    def sync_all(self, kinds: Optional[Sequence[str]] = None) -> Dict[str, SyncResult]:
        """Run every requested kind concurrently and wait for all of them."""
        # one pass per kind, first occurrence keeps its position
        selected = list(dict.fromkeys(kinds)) if kinds else list(ASSET_KINDS)
        for kind in selected:
            get_operations(kind)

        results: Dict[str, SyncResult] = {}
        workers = max(1, min(int(self.config.app.concurrency), len(selected)))
        self.log.info("Synchronizing %s kind(s) with %s worker(s)", len(selected), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pulse-sync") as pool:
            futures = {kind: pool.submit(self.sync_kind, kind) for kind in selected}
            for kind, future in futures.items():
                try:
                    results[kind] = future.result()
                except Exception as exc:
                    self.log.exception("%s pass crashed", kind)
                    results[kind] = SyncResult(kind, FAILED, error=exc)

        failed = [k for k, r in results.items() if not r.ok]
        if failed:
            self.log.warning("Batch finished with failures: %s", ", ".join(failed))
        else:
            self.log.info("Batch finished: %s kind(s) OK", len(results))
        return results

    # ------------- Write-back -------------

    def push_site(self, draft: SiteDraft) -> SyncResult:
        return self._write_back("sites", draft.to_payload(), None)

    def push_device(self, draft: DeviceDraft, device_id: Optional[int] = None) -> SyncResult:
        return self._write_back("devices", draft.to_payload(), device_id)

    def _write_back(self, kind: str, payload: Dict[str, Any], object_id: Optional[int]) -> SyncResult:
        operations = get_operations(kind)
        verb = "update" if object_id is not None else "create"
        try:
            records = self._tracked("netbox", lambda: self.netbox.write(operations, payload, object_id=object_id))
        except SyncError as exc:
            exc.kind = exc.kind or kind
            self.log.error("%s %s failed: %s", kind, verb, exc)
            return SyncResult(kind, FAILED, error=exc)
        self.log.info("%s %s accepted by NetBox: id(s)=%s", kind, verb, [rec.id for rec in records])
        return self.sync_kind(kind, records=records)

    # ------------- Problems -------------

    def sync_problems(self, event_ids: Optional[Sequence[int]] = None) -> SyncResult:
        """Full refresh (with pruning) or a targeted refresh of specific events."""
        if event_ids is None:
            return self.sync_kind("problems")
        ids = list(event_ids)
        try:
            records = self._tracked("zabbix", lambda: self.zabbix.get_problems(event_ids=ids))
        except SyncError as exc:
            exc.kind = exc.kind or "problems"
            self.log.error("problems fetch failed: %s", exc)
            return SyncResult("problems", FAILED, error=exc)
        return self.sync_kind("problems", records=records)

    def acknowledge_problems(
        self,
        event_ids: Sequence[int],
        action: int,
        *,
        message: Optional[str] = None,
        severity: Optional[int] = None,
        suppress_until: Optional[int] = None,
    ) -> SyncResult:
        try:
            self._tracked("zabbix", lambda: self.zabbix.acknowledge(
                event_ids, action, message=message, severity=severity, suppress_until=suppress_until,
            ))
        except SyncError as exc:
            exc.kind = exc.kind or "problems"
            self.log.error("event.acknowledge failed: %s", exc)
            return SyncResult("problems", FAILED, error=exc)
        return self.sync_problems(event_ids)

    def recent_events(
        self,
        *,
        time_from: Optional[int] = None,
        time_till: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Raw Zabbix events of monitored devices within the configured problem window."""
        host_ids = self._monitored_host_ids()
        if not host_ids:
            return []
        window = int(self.config.zabbix.problem_time_window)
        return self._tracked("zabbix", lambda: self.zabbix.get_events(
            host_ids, time_from=time_from, time_till=time_till, window_sec=window,
        ))

    def _monitored_host_ids(self) -> List[int]:
        try:
            with self.store.read_session() as session:
                rows = session.scalars(
                    select(Device.zabbix_id).where(Device.zabbix_id != 0).distinct().order_by(Device.zabbix_id)
                )
                return list(rows)
        except SQLAlchemyError as exc:
            raise SaveError(f"reading monitored devices failed: {exc}", kind="problems") from exc

    def _fetch_all_problems(self) -> List[Any]:
        host_ids = self._monitored_host_ids()
        if not host_ids:
            self.log.info("No monitored devices locally; problem list is empty")
            return []
        batch_size = int(self.config.zabbix.batch_size)
        out: List[Any] = []
        for batch in _chunks(host_ids, batch_size):
            out.extend(self._tracked("zabbix", lambda: self.zabbix.get_problems(host_ids=batch)))
        self.log.debug("Fetched %s problem(s) for %s host(s)", len(out), len(host_ids))
        return out
