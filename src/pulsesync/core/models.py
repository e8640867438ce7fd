"""
Local persisted records (SQLAlchemy ORM).

Primary keys are the remote ids, never autoincremented. Ownership references
are plain many-to-one relationships; collections on the other side exist for
navigation only and never cascade deletes, so removing a stale parent just
clears the children's foreign keys.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class TimestampedMixin:
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    created: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)


class TenantGroup(TimestampedMixin, Base):
    __tablename__ = "tenant_groups"

    name: Mapped[str] = mapped_column(String(200), default="")

    tenants: Mapped[List["Tenant"]] = relationship(back_populates="group")


class Tenant(TimestampedMixin, Base):
    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(200), default="")
    group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tenant_groups.id"), default=None)

    group: Mapped[Optional[TenantGroup]] = relationship(back_populates="tenants")
    sites: Mapped[List["Site"]] = relationship(back_populates="tenant")


class Region(TimestampedMixin, Base):
    __tablename__ = "regions"

    name: Mapped[str] = mapped_column(String(200), default="")
    site_count: Mapped[int] = mapped_column(Integer, default=0)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("regions.id"), default=None)

    parent: Mapped[Optional["Region"]] = relationship(back_populates="children", remote_side="Region.id")
    children: Mapped[List["Region"]] = relationship(back_populates="parent")
    sites: Mapped[List["Site"]] = relationship(back_populates="region")


class SiteGroup(TimestampedMixin, Base):
    __tablename__ = "site_groups"

    name: Mapped[str] = mapped_column(String(200), default="")
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("site_groups.id"), default=None)

    parent: Mapped[Optional["SiteGroup"]] = relationship(back_populates="children", remote_side="SiteGroup.id")
    children: Mapped[List["SiteGroup"]] = relationship(back_populates="parent")
    sites: Mapped[List["Site"]] = relationship(back_populates="group")


class DeviceRole(TimestampedMixin, Base):
    __tablename__ = "device_roles"

    name: Mapped[str] = mapped_column(String(200), default="")
    colour: Mapped[str] = mapped_column(String(16), default="")

    devices: Mapped[List["Device"]] = relationship(back_populates="role")


class DeviceType(TimestampedMixin, Base):
    __tablename__ = "device_types"

    model: Mapped[str] = mapped_column(String(200), default="")
    u_height: Mapped[Optional[float]] = mapped_column(Float, default=None)

    devices: Mapped[List["Device"]] = relationship(back_populates="device_type")


class Site(TimestampedMixin, Base):
    __tablename__ = "sites"

    name: Mapped[str] = mapped_column(String(200), default="")
    slug: Mapped[str] = mapped_column(String(200), default="")
    display: Mapped[str] = mapped_column(String(200), default="")
    url: Mapped[str] = mapped_column(String(500), default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    latitude: Mapped[Optional[float]] = mapped_column(Float, default=None)
    longitude: Mapped[Optional[float]] = mapped_column(Float, default=None)
    physical_address: Mapped[str] = mapped_column(String(500), default="")
    shipping_address: Mapped[str] = mapped_column(String(500), default="")
    device_count: Mapped[int] = mapped_column(Integer, default=0)

    group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("site_groups.id"), default=None)
    tenant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tenants.id"), default=None)
    region_id: Mapped[Optional[int]] = mapped_column(ForeignKey("regions.id"), default=None)

    group: Mapped[Optional[SiteGroup]] = relationship(back_populates="sites")
    tenant: Mapped[Optional[Tenant]] = relationship(back_populates="sites")
    region: Mapped[Optional[Region]] = relationship(back_populates="sites")
    racks: Mapped[List["Rack"]] = relationship(back_populates="site")
    devices: Mapped[List["Device"]] = relationship(back_populates="site")


class Rack(TimestampedMixin, Base):
    __tablename__ = "racks"

    name: Mapped[str] = mapped_column(String(200), default="")
    display: Mapped[str] = mapped_column(String(200), default="")
    url: Mapped[str] = mapped_column(String(500), default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    form_factor: Mapped[str] = mapped_column(String(50), default="")
    u_height: Mapped[int] = mapped_column(Integer, default=0)
    starting_unit: Mapped[int] = mapped_column(Integer, default=1)
    device_count: Mapped[int] = mapped_column(Integer, default=0)
    site_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sites.id"), default=None)

    site: Mapped[Optional[Site]] = relationship(back_populates="racks")
    devices: Mapped[List["Device"]] = relationship(back_populates="rack")


class Device(TimestampedMixin, Base):
    __tablename__ = "devices"

    name: Mapped[str] = mapped_column(String(200), default="")
    display: Mapped[str] = mapped_column(String(200), default="")
    url: Mapped[str] = mapped_column(String(500), default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    serial: Mapped[str] = mapped_column(String(200), default="Unknown")
    primary_ip: Mapped[str] = mapped_column(String(100), default="Unknown")
    rack_position: Mapped[Optional[float]] = mapped_column(Float, default=None)
    x: Mapped[float] = mapped_column(Float, default=0.0)
    y: Mapped[float] = mapped_column(Float, default=0.0)
    zabbix_id: Mapped[int] = mapped_column(BigInteger, default=0, index=True)
    zabbix_instance: Mapped[int] = mapped_column(Integer, default=0)

    site_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sites.id"), default=None)
    role_id: Mapped[Optional[int]] = mapped_column(ForeignKey("device_roles.id"), default=None)
    device_type_id: Mapped[Optional[int]] = mapped_column(ForeignKey("device_types.id"), default=None)
    rack_id: Mapped[Optional[int]] = mapped_column(ForeignKey("racks.id"), default=None)

    site: Mapped[Optional[Site]] = relationship(back_populates="devices")
    role: Mapped[Optional[DeviceRole]] = relationship(back_populates="devices")
    device_type: Mapped[Optional[DeviceType]] = relationship(back_populates="devices")
    rack: Mapped[Optional[Rack]] = relationship(back_populates="devices")
    problems: Mapped[List["Problem"]] = relationship(back_populates="device")


class Problem(Base):
    """Active monitoring problem, keyed by the Zabbix event id."""
    __tablename__ = "problems"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(500), default="")
    clock: Mapped[int] = mapped_column(BigInteger, default=0)
    r_clock: Mapped[int] = mapped_column(BigInteger, default=0)
    severity: Mapped[int] = mapped_column(Integer, default=0)
    acknowledged: Mapped[int] = mapped_column(Integer, default=0)
    suppressed: Mapped[int] = mapped_column(Integer, default=0)
    source: Mapped[int] = mapped_column(Integer, default=0)
    object: Mapped[int] = mapped_column(Integer, default=0)
    object_id: Mapped[int] = mapped_column(BigInteger, default=0)
    opdata: Mapped[str] = mapped_column(String(500), default="")
    value: Mapped[int] = mapped_column(Integer, default=0)
    host_id: Mapped[int] = mapped_column(BigInteger, default=0)
    device_id: Mapped[Optional[int]] = mapped_column(ForeignKey("devices.id"), default=None)

    device: Mapped[Optional[Device]] = relationship(back_populates="problems")
