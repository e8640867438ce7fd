"""Entity kind registry: one table entry of per-kind operations per synchronized kind."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Tuple, Type

from sqlalchemy.orm import Session

from . import models as m
from . import records as r
from .relationships import ForeignKeyField, LinkResult, RelationshipResolver


@dataclass(frozen=True)
class EntityOperations:
    kind: str                      # registry key, also used in logs and CLI
    model: Type[Any]               # ORM class of the local record
    record_type: Type[Any]         # property record class
    fields: Tuple[str, ...]        # scalar fields copied record -> local
    foreign_keys: Tuple[ForeignKeyField, ...] = ()
    source: str = "netbox"
    path: str = ""                 # remote collection path (NetBox)
    writable: bool = False

    def create_local(self, record: Any) -> Any:
        return self.model(id=record.id)

    def copy_scalar_fields(self, local: Any, record: Any) -> None:
        for name in self.fields:
            setattr(local, name, getattr(record, name))

    def resolve_relationships(
        self,
        local: Any,
        record: Any,
        session: Session,
        resolver: RelationshipResolver,
    ) -> LinkResult:
        return resolver.link(local, record, session, self.foreign_keys)

    def is_unchanged(self, local: Any, record: Any) -> bool:
        # equal timestamps count as unchanged, remote does not overwrite
        return local.last_updated == record.last_updated


@dataclass(frozen=True)
class ProblemOperations(EntityOperations):
    """Problems have no modification timestamp; compare the fields Zabbix mutates."""

    def is_unchanged(self, local: Any, record: Any) -> bool:
        current = (local.name, local.acknowledged, local.suppressed, local.severity,
                   local.opdata, local.r_clock, local.value)
        return current == record.fingerprint()


_STAMPS = ("created", "last_updated")

_KINDS: Dict[str, EntityOperations] = {
    "tenant_groups": EntityOperations(
        kind="tenant_groups",
        model=m.TenantGroup,
        record_type=r.TenantGroupRecord,
        fields=("name",) + _STAMPS,
        path="/api/tenancy/tenant-groups/",
    ),
    "tenants": EntityOperations(
        kind="tenants",
        model=m.Tenant,
        record_type=r.TenantRecord,
        fields=("name",) + _STAMPS,
        foreign_keys=(ForeignKeyField("group_id", "group", m.TenantGroup),),
        path="/api/tenancy/tenants/",
    ),
    "regions": EntityOperations(
        kind="regions",
        model=m.Region,
        record_type=r.RegionRecord,
        fields=("name", "site_count") + _STAMPS,
        foreign_keys=(ForeignKeyField("parent_id", "parent", m.Region),),
        path="/api/dcim/regions/",
    ),
    "site_groups": EntityOperations(
        kind="site_groups",
        model=m.SiteGroup,
        record_type=r.SiteGroupRecord,
        fields=("name",) + _STAMPS,
        foreign_keys=(ForeignKeyField("parent_id", "parent", m.SiteGroup),),
        path="/api/dcim/site-groups/",
    ),
    "device_roles": EntityOperations(
        kind="device_roles",
        model=m.DeviceRole,
        record_type=r.DeviceRoleRecord,
        fields=("name", "colour") + _STAMPS,
        path="/api/dcim/device-roles/",
    ),
    "device_types": EntityOperations(
        kind="device_types",
        model=m.DeviceType,
        record_type=r.DeviceTypeRecord,
        fields=("model", "u_height") + _STAMPS,
        path="/api/dcim/device-types/",
    ),
    "sites": EntityOperations(
        kind="sites",
        model=m.Site,
        record_type=r.SiteRecord,
        fields=("name", "slug", "display", "url", "status", "latitude", "longitude",
                "physical_address", "shipping_address", "device_count") + _STAMPS,
        foreign_keys=(
            ForeignKeyField("group_id", "group", m.SiteGroup),
            ForeignKeyField("tenant_id", "tenant", m.Tenant),
            ForeignKeyField("region_id", "region", m.Region),
        ),
        path="/api/dcim/sites/",
        writable=True,
    ),
    "racks": EntityOperations(
        kind="racks",
        model=m.Rack,
        record_type=r.RackRecord,
        fields=("name", "display", "url", "status", "form_factor", "u_height",
                "starting_unit", "device_count") + _STAMPS,
        foreign_keys=(ForeignKeyField("site_id", "site", m.Site),),
        path="/api/dcim/racks/",
    ),
    "devices": EntityOperations(
        kind="devices",
        model=m.Device,
        record_type=r.DeviceRecord,
        fields=("name", "display", "url", "status", "serial", "primary_ip", "rack_position",
                "x", "y", "zabbix_id", "zabbix_instance") + _STAMPS,
        foreign_keys=(
            ForeignKeyField("site_id", "site", m.Site),
            ForeignKeyField("role_id", "role", m.DeviceRole),
            ForeignKeyField("device_type_id", "device_type", m.DeviceType),
            ForeignKeyField("rack_id", "rack", m.Rack),
        ),
        path="/api/dcim/devices/",
        writable=True,
    ),
    "problems": ProblemOperations(
        kind="problems",
        model=m.Problem,
        record_type=r.ProblemRecord,
        fields=("name", "clock", "r_clock", "severity", "acknowledged", "suppressed",
                "source", "object", "object_id", "opdata", "value", "host_id"),
        foreign_keys=(ForeignKeyField("host_id", "device", m.Device, target_attr="zabbix_id"),),
        source="zabbix",
    ),
}

# dependency order; dependents last
ASSET_KINDS: Tuple[str, ...] = (
    "tenant_groups",
    "tenants",
    "regions",
    "site_groups",
    "device_roles",
    "device_types",
    "sites",
    "racks",
    "devices",
)


def get_operations(kind: str) -> EntityOperations:
    try:
        return _KINDS[kind]
    except KeyError:
        raise KeyError(f"Unknown entity kind '{kind}' (known: {', '.join(_KINDS)})") from None


def iter_operations() -> Iterable[EntityOperations]:
    return _KINDS.values()


def kind_names() -> Tuple[str, ...]:
    return tuple(_KINDS)
