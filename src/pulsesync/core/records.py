"""
Property records: immutable snapshots of remote objects.

Each record type decodes one NetBox (or Zabbix) JSON object via
``from_json``. Nested references are reduced to their numeric id with ``0``
meaning "no relation"; timestamps become naive UTC datetimes so they compare
equal after a round trip through the local store.

Drafts (:class:`SiteDraft`, :class:`DeviceDraft`) are the write-side
counterpart used by the write-back path.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from .config import ConfigError
from .errors import DecodeError

JsonObj = Dict[str, Any]
R = TypeVar("R")


# ---------- Field helpers ----------

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse NetBox ISO-8601 (``2024-03-01T10:20:30.123456Z``) into naive UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _require(obj: JsonObj, key: str) -> Any:
    if key not in obj or obj[key] is None:
        raise KeyError(key)
    return obj[key]


def _record_id(obj: JsonObj, key: str = "id") -> int:
    value = _require(obj, key)
    if isinstance(value, bool):
        raise TypeError(f"'{key}' must be numeric")
    return int(value)


def _int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    return int(value)


def _float(value: Any, default: Optional[float] = None) -> Optional[float]:
    if value in (None, ""):
        return default
    return float(value)


def _nested(obj: JsonObj, key: str) -> JsonObj:
    value = obj.get(key)
    return value if isinstance(value, dict) else {}


def _nested_id(obj: JsonObj, *keys: str) -> int:
    """Id of the first present nested reference among ``keys``; 0 when none."""
    for key in keys:
        ref = obj.get(key)
        if isinstance(ref, dict) and ref.get("id") is not None:
            return int(ref["id"])
        if isinstance(ref, int) and not isinstance(ref, bool):
            return ref
    return 0


def _status(obj: JsonObj) -> str:
    status = obj.get("status")
    if isinstance(status, dict):
        return str(status.get("value") or "")
    return str(status or "")


def decode_records(items: Iterable[Any], record_type: Type[R]) -> List[R]:
    """Decode a page worth of JSON objects; any bad item fails the whole page."""
    out: List[R] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise DecodeError(f"{record_type.__name__}[{index}]: expected an object, got {type(item).__name__}")
        try:
            out.append(record_type.from_json(item))  # type: ignore[attr-defined]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"{record_type.__name__}[{index}] (id={item.get('id')!r}): {exc!r}") from exc
    return out


# ---------- NetBox records ----------

@dataclass(frozen=True)
class TenantGroupRecord:
    id: int
    name: str
    created: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_json(cls, obj: JsonObj) -> "TenantGroupRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(obj.get("last_updated")),
        )


@dataclass(frozen=True)
class TenantRecord:
    id: int
    name: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    group_id: int = 0

    @classmethod
    def from_json(cls, obj: JsonObj) -> "TenantRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            group_id=_nested_id(obj, "group"),
        )


@dataclass(frozen=True)
class RegionRecord:
    id: int
    name: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    site_count: int = 0
    parent_id: int = 0

    @classmethod
    def from_json(cls, obj: JsonObj) -> "RegionRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            site_count=_int(obj.get("site_count")),
            parent_id=_nested_id(obj, "parent"),
        )


@dataclass(frozen=True)
class SiteGroupRecord:
    id: int
    name: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    parent_id: int = 0

    @classmethod
    def from_json(cls, obj: JsonObj) -> "SiteGroupRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            parent_id=_nested_id(obj, "parent"),
        )


@dataclass(frozen=True)
class DeviceRoleRecord:
    id: int
    name: str
    colour: str = ""
    created: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_json(cls, obj: JsonObj) -> "DeviceRoleRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            colour=str(obj.get("color") or ""),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(obj.get("last_updated")),
        )


@dataclass(frozen=True)
class DeviceTypeRecord:
    id: int
    model: str
    u_height: Optional[float] = None
    created: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @classmethod
    def from_json(cls, obj: JsonObj) -> "DeviceTypeRecord":
        return cls(
            id=_record_id(obj),
            model=str(_require(obj, "model")),
            u_height=_float(obj.get("u_height")),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(obj.get("last_updated")),
        )


@dataclass(frozen=True)
class SiteRecord:
    id: int
    name: str
    slug: str
    display: str
    url: str
    status: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    physical_address: str = ""
    shipping_address: str = ""
    device_count: int = 0
    group_id: int = 0
    tenant_id: int = 0
    region_id: int = 0

    @classmethod
    def from_json(cls, obj: JsonObj) -> "SiteRecord":
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            slug=str(obj.get("slug") or ""),
            display=str(obj.get("display") or obj.get("name") or ""),
            url=str(obj.get("url") or ""),
            status=_status(obj),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            latitude=_float(obj.get("latitude")),
            longitude=_float(obj.get("longitude")),
            physical_address=str(obj.get("physical_address") or ""),
            shipping_address=str(obj.get("shipping_address") or ""),
            device_count=_int(obj.get("device_count")),
            group_id=_nested_id(obj, "group"),
            tenant_id=_nested_id(obj, "tenant"),
            region_id=_nested_id(obj, "region", "region_netbox"),
        )


@dataclass(frozen=True)
class RackRecord:
    id: int
    name: str
    display: str
    url: str
    status: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    form_factor: str = ""
    u_height: int = 0
    starting_unit: int = 1
    device_count: int = 0
    site_id: int = 0
    site_name: str = ""

    @classmethod
    def from_json(cls, obj: JsonObj) -> "RackRecord":
        site = _nested(obj, "site")
        form_factor = obj.get("form_factor")
        if isinstance(form_factor, dict):
            form_factor = form_factor.get("value")
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            display=str(obj.get("display") or obj.get("name") or ""),
            url=str(obj.get("url") or ""),
            status=_status(obj),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            form_factor=str(form_factor or ""),
            u_height=_int(obj.get("u_height")),
            starting_unit=_int(obj.get("starting_unit"), 1),
            device_count=_int(obj.get("device_count")),
            site_id=_nested_id(obj, "site"),
            site_name=str(site.get("name") or ""),
        )


@dataclass(frozen=True)
class DeviceRecord:
    id: int
    name: str
    display: str
    url: str
    status: str
    created: Optional[datetime]
    last_updated: Optional[datetime]
    serial: str = "Unknown"
    primary_ip: str = "Unknown"
    rack_position: Optional[float] = None
    x: float = 0.0
    y: float = 0.0
    zabbix_id: int = 0
    zabbix_instance: int = 0
    site_id: int = 0
    site_name: str = ""
    role_id: int = 0
    role_name: str = ""
    device_type_id: int = 0
    device_type_model: str = ""
    rack_id: int = 0
    rack_name: str = ""

    @classmethod
    def from_json(cls, obj: JsonObj) -> "DeviceRecord":
        custom = _nested(obj, "custom_fields")
        role = _nested(obj, "role") or _nested(obj, "device_role")
        return cls(
            id=_record_id(obj),
            name=str(_require(obj, "name")),
            display=str(obj.get("display") or obj.get("name") or ""),
            url=str(obj.get("url") or ""),
            status=_status(obj),
            created=parse_timestamp(obj.get("created")),
            last_updated=parse_timestamp(_require(obj, "last_updated")),
            serial=str(obj.get("serial") or "Unknown"),
            primary_ip=str(_nested(obj, "primary_ip").get("address") or "Unknown"),
            rack_position=_float(obj.get("position")),
            x=_float(custom.get("coordinate_x"), 0.0),
            y=_float(custom.get("coordinate_y"), 0.0),
            zabbix_id=_int(custom.get("zabbix_id")),
            zabbix_instance=_int(custom.get("zabbix_instance")),
            site_id=_nested_id(obj, "site"),
            site_name=str(_nested(obj, "site").get("name") or ""),
            role_id=_nested_id(obj, "role", "device_role"),
            role_name=str(role.get("name") or ""),
            device_type_id=_nested_id(obj, "device_type"),
            device_type_model=str(_nested(obj, "device_type").get("model") or ""),
            rack_id=_nested_id(obj, "rack"),
            rack_name=str(_nested(obj, "rack").get("name") or ""),
        )


# ---------- Zabbix records ----------

@dataclass(frozen=True)
class ProblemRecord:
    """An active Zabbix problem; ``id`` is the event id."""
    id: int
    name: str
    clock: int
    severity: int = 0
    acknowledged: int = 0
    suppressed: int = 0
    source: int = 0
    object: int = 0
    object_id: int = 0
    opdata: str = ""
    r_clock: int = 0
    value: int = 0
    host_id: int = 0

    # problems carry no modification timestamp
    last_updated = None

    @classmethod
    def from_json(cls, obj: JsonObj) -> "ProblemRecord":
        hosts = obj.get("hosts") or []
        host_id = 0
        if hosts and isinstance(hosts[0], dict):
            host_id = _int(hosts[0].get("hostid"))
        return cls(
            id=_record_id(obj, "eventid"),
            name=str(obj.get("name") or ""),
            clock=_int(_require(obj, "clock")),
            severity=_int(obj.get("severity")),
            acknowledged=_int(obj.get("acknowledged")),
            suppressed=_int(obj.get("suppressed")),
            source=_int(obj.get("source")),
            object=_int(obj.get("object")),
            object_id=_int(obj.get("objectid")),
            opdata=str(obj.get("opdata") or ""),
            r_clock=_int(obj.get("r_clock")),
            value=_int(obj.get("value")),
            host_id=host_id,
        )

    def fingerprint(self) -> Tuple[Any, ...]:
        return (self.name, self.acknowledged, self.suppressed, self.severity, self.opdata, self.r_clock, self.value)


# ---------- Write drafts ----------

def _compact(payload: JsonObj) -> JsonObj:
    return {k: v for k, v in payload.items() if v is not None}


def _draft_fields(cls: type, data: Any, extra: Tuple[str, ...] = ()) -> JsonObj:
    """Split a draft mapping into dataclass kwargs; unknown or missing keys are a ConfigError."""
    if not isinstance(data, dict):
        raise ConfigError(f"{cls.__name__} must be a mapping")
    declared = cls.__dataclass_fields__
    unknown = sorted(str(k) for k in data if k not in declared and k not in extra)
    if unknown:
        raise ConfigError(f"{cls.__name__}: unknown key(s): {', '.join(unknown)}")
    missing = [name for name, f in declared.items()
               if f.default is MISSING and f.default_factory is MISSING and name not in data]
    if missing:
        raise ConfigError(f"{cls.__name__}: missing key(s): {', '.join(missing)}")
    return {k: v for k, v in data.items() if k in declared}


@dataclass
class SiteDraft:
    name: str
    slug: str
    status: str = "active"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    physical_address: Optional[str] = None
    shipping_address: Optional[str] = None
    group_id: Optional[int] = None
    tenant_id: Optional[int] = None
    region_id: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: JsonObj) -> "SiteDraft":
        return cls(**_draft_fields(cls, data))

    def to_payload(self) -> JsonObj:
        return _compact({
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "physical_address": self.physical_address,
            "shipping_address": self.shipping_address,
            "group": self.group_id or None,
            "tenant": self.tenant_id or None,
            "region": self.region_id or None,
        })


# draft keys carried to NetBox as custom fields
_DEVICE_CUSTOM_KEYS = ("x", "y", "zabbix_id", "zabbix_instance")
_DEVICE_CUSTOM_FIELDS = ("coordinate_x", "coordinate_y", "zabbix_id", "zabbix_instance")


@dataclass
class DeviceDraft:
    name: str
    site_id: int
    role_id: int
    device_type_id: int
    status: str = "active"
    serial: Optional[str] = None
    rack_id: Optional[int] = None
    rack_position: Optional[float] = None
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: JsonObj) -> "DeviceDraft":
        known = _draft_fields(cls, data, extra=_DEVICE_CUSTOM_KEYS)
        custom = dict(known.pop("custom_fields", None) or {})
        for src, dst in zip(_DEVICE_CUSTOM_KEYS, _DEVICE_CUSTOM_FIELDS):
            if src in data:
                custom[dst] = data[src]
        return cls(custom_fields=custom, **known)

    def to_payload(self) -> JsonObj:
        return _compact({
            "name": self.name,
            "site": self.site_id or None,
            "role": self.role_id or None,
            "device_type": self.device_type_id or None,
            "status": self.status,
            "serial": self.serial,
            "rack": self.rack_id or None,
            "position": self.rack_position,
            "custom_fields": self.custom_fields or None,
        })
