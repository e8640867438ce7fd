"""
Foreign-key resolution between local records.

A kind declares its foreign keys as :class:`ForeignKeyField` entries. After a
record is created or updated, :meth:`RelationshipResolver.link` turns each
numeric foreign key carried by the remote record into a reference to an
existing local record, reading (never writing) the target kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Type

from sqlalchemy import select
from sqlalchemy.orm import Session


@dataclass(frozen=True)
class ForeignKeyField:
    field: str                 # attribute on the property record, e.g. "site_id"
    relation: str              # relationship attribute on the local record, e.g. "site"
    target: Type[Any]          # ORM model of the referenced kind
    target_attr: str = "id"    # lookup column on the target


@dataclass
class LinkResult:
    linked: int = 0
    cleared: int = 0
    missing: int = 0


def _remote_value(record: Any, fk: ForeignKeyField) -> int:
    return int(getattr(record, fk.field, 0) or 0)


def _points_at(current: Any, fk: ForeignKeyField, value: int) -> bool:
    return current is not None and getattr(current, fk.target_attr) == value


class RelationshipResolver:
    def __init__(self, *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.log = logger or logging.getLogger("pulse.relationships")

    def link(
        self,
        local: Any,
        record: Any,
        session: Session,
        foreign_keys: Sequence[ForeignKeyField],
    ) -> LinkResult:
        """
        Attach/detach every declared reference on `local` from `record`.

        - 0/absent clears the reference (no-op when already clear)
        - a hit sets the reference
        - a miss leaves the reference as it is; a later pass retries it
        """
        result = LinkResult()
        for fk in foreign_keys:
            value = _remote_value(record, fk)
            current = getattr(local, fk.relation)

            if not value:
                if current is not None:
                    setattr(local, fk.relation, None)
                    result.cleared += 1
                continue

            if _points_at(current, fk, value):
                continue

            column = getattr(fk.target, fk.target_attr)
            target = session.scalars(select(fk.target).where(column == value).limit(1)).first()
            if target is None:
                result.missing += 1
                self.log.debug(
                    "%s id=%s: %s=%s not found locally (yet)",
                    type(local).__name__, record.id, fk.field, value,
                )
                continue

            setattr(local, fk.relation, target)
            result.linked += 1
        return result

    def is_pending(self, local: Any, record: Any, foreign_keys: Sequence[ForeignKeyField]) -> bool:
        """True when some declared reference does not match the remote foreign key."""
        for fk in foreign_keys:
            value = _remote_value(record, fk)
            current = getattr(local, fk.relation)
            if not value:
                if current is not None:
                    return True
            elif not _points_at(current, fk, value):
                return True
        return False
