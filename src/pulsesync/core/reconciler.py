"""
EntityReconciler: one create/update/delete pass over one entity kind.

A pass either reconciles an explicit record list (write-back responses,
targeted refreshes) or fetches the full remote collection; only the latter
prunes local records the remote no longer has. The whole pass commits once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import RelationshipError, SaveError, SyncError
from .registry import EntityOperations
from .relationships import LinkResult, RelationshipResolver
from .store import LocalStore

COUNT_KEYS = ("CREATED", "UPDATED", "RELINKED", "UNCHANGED", "DELETED")

Fetcher = Callable[[], Sequence[Any]]


@dataclass(frozen=True)
class ReconcileReport:
    kind: str
    counts: Dict[str, int]
    pruned: bool
    received: int
    dry_run: bool = False
    created_ids: List[int] = field(default_factory=list)
    deleted_ids: List[int] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return sum(self.counts[k] for k in ("CREATED", "UPDATED", "RELINKED", "DELETED"))


def _append(counts: Dict[str, int], key: str) -> None:
    counts[key] = counts.get(key, 0) + 1


class EntityReconciler:
    def __init__(
        self,
        store: LocalStore,
        *,
        resolver: Optional[RelationshipResolver] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.store = store
        self.log = logger or logging.getLogger("pulse.reconciler")
        self.resolver = resolver or RelationshipResolver(logger=self.log)

    def reconcile(
        self,
        operations: EntityOperations,
        records: Optional[Iterable[Any]] = None,
        *,
        fetch: Optional[Fetcher] = None,
        dry_run: bool = False,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> ReconcileReport:
        """
        Reconcile `records` (no pruning) or the result of `fetch()` (pruning).

        Raises the classified SyncError of the failing step, tagged with the kind;
        nothing of a failed pass is committed.
        """
        log = logger or self.log
        kind = operations.kind
        prune = records is None
        if prune:
            if fetch is None:
                raise ValueError(f"{kind}: either records or fetch is required")
            try:
                incoming = list(fetch())
            except SyncError as exc:
                exc.kind = exc.kind or kind
                raise
        else:
            incoming = list(records or [])

        with self.store.write_session() as session:
            report = self._apply(session, operations, incoming, prune=prune, dry_run=dry_run, log=log)
            if dry_run:
                session.rollback()
            else:
                try:
                    session.commit()
                except SQLAlchemyError as exc:
                    session.rollback()
                    raise SaveError(f"commit failed: {exc}", kind=kind) from exc

        log.info(
            "%s reconciled%s: %s",
            kind,
            " (dry-run)" if dry_run else "",
            " | ".join(f"{k}={report.counts[k]}" for k in COUNT_KEYS),
        )
        return report

    # ------------- Internal -------------

    def _load_existing(
        self,
        session: Session,
        operations: EntityOperations,
        incoming: Sequence[Any],
        prune: bool,
    ) -> Dict[int, Any]:
        model = operations.model
        stmt = select(model)
        if not prune:
            ids = {rec.id for rec in incoming}
            if not ids:
                return {}
            stmt = stmt.where(model.id.in_(ids))
        return {obj.id: obj for obj in session.scalars(stmt)}

    def _apply(
        self,
        session: Session,
        operations: EntityOperations,
        incoming: Sequence[Any],
        *,
        prune: bool,
        dry_run: bool,
        log: logging.LoggerAdapter,
    ) -> ReconcileReport:
        kind = operations.kind
        counts: Dict[str, int] = {k: 0 for k in COUNT_KEYS}
        created_ids: List[int] = []
        deleted_ids: List[int] = []

        try:
            existing = self._load_existing(session, operations, incoming, prune)
        except SQLAlchemyError as exc:
            raise SaveError(f"loading local records failed: {exc}", kind=kind) from exc

        # records handled in this pass, so duplicate ids update one local object
        seen: Dict[int, Any] = {}

        for record in incoming:
            local = existing.pop(record.id, None) or seen.get(record.id)
            is_new = local is None
            if is_new:
                local = operations.create_local(record)

            if is_new or not operations.is_unchanged(local, record):
                operations.copy_scalar_fields(local, record)
                self._link(session, operations, local, record, log)
                if is_new:
                    session.add(local)
                    created_ids.append(record.id)
                _append(counts, "CREATED" if is_new else "UPDATED")
            elif self.resolver.is_pending(local, record, operations.foreign_keys):
                linked = self._link(session, operations, local, record, log)
                _append(counts, "RELINKED" if (linked.linked or linked.cleared) else "UNCHANGED")
            else:
                _append(counts, "UNCHANGED")

            seen[record.id] = local

        if prune:
            for stale_id, stale in existing.items():
                session.delete(stale)
                deleted_ids.append(stale_id)
                _append(counts, "DELETED")
            if deleted_ids:
                log.debug("%s pruning %s stale record(s): %s", kind, len(deleted_ids), deleted_ids)

        try:
            session.flush()
        except SQLAlchemyError as exc:
            raise SaveError(f"flush failed: {exc}", kind=kind) from exc

        return ReconcileReport(
            kind=kind,
            counts=counts,
            pruned=prune,
            received=len(incoming),
            dry_run=dry_run,
            created_ids=created_ids,
            deleted_ids=deleted_ids,
        )

    def _link(
        self,
        session: Session,
        operations: EntityOperations,
        local: Any,
        record: Any,
        log: logging.LoggerAdapter,
    ) -> LinkResult:
        try:
            return operations.resolve_relationships(local, record, session, self.resolver)
        except Exception as exc:
            log.error("%s id=%s: relationship mapping failed: %s", operations.kind, record.id, exc)
            raise RelationshipError(operations.kind, record.id, str(exc)) from exc
