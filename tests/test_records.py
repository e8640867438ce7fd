from datetime import datetime

import pytest

from pulsesync.core.config import ConfigError
from pulsesync.core.errors import DecodeError
from pulsesync.core.records import (
    DeviceDraft,
    DeviceRecord,
    DeviceRoleRecord,
    ProblemRecord,
    SiteDraft,
    SiteRecord,
    TenantGroupRecord,
    decode_records,
    parse_timestamp,
)

from fakes import device_json, problem_json, site_json


def test_timestamps_become_naive_utc():
    assert parse_timestamp("2024-03-01T10:20:30.123456Z") == datetime(2024, 3, 1, 10, 20, 30, 123456)
    assert parse_timestamp("2024-03-01T12:20:30+02:00") == datetime(2024, 3, 1, 10, 20, 30)
    assert parse_timestamp(None) is None


def test_site_nested_references_and_status():
    rec = SiteRecord.from_json(site_json(3, name="Wellington", group=4, tenant=5, region=6))
    assert (rec.group_id, rec.tenant_id, rec.region_id) == (4, 5, 6)
    assert rec.status == "active"
    assert rec.slug == "wellington"
    assert rec.last_updated == datetime(2024, 1, 1, 0, 0, 0)


def test_site_accepts_region_netbox_key():
    obj = site_json(3)
    obj.pop("region")
    obj["region_netbox"] = {"id": 9}
    assert SiteRecord.from_json(obj).region_id == 9


def test_device_defaults_for_missing_fields():
    obj = device_json(8, site=2, role=3, device_type=4)
    obj["serial"] = ""
    obj["primary_ip"] = None
    obj["custom_fields"] = {}
    rec = DeviceRecord.from_json(obj)
    assert rec.serial == "Unknown" and rec.primary_ip == "Unknown"
    assert (rec.x, rec.y, rec.zabbix_id, rec.zabbix_instance) == (0.0, 0.0, 0, 0)
    assert (rec.site_id, rec.role_id, rec.device_type_id, rec.rack_id) == (2, 3, 4, 0)
    assert rec.role_name == "R3" and rec.device_type_model == "M4"


def test_optional_last_updated_kinds():
    assert TenantGroupRecord.from_json({"id": 1, "name": "g", "last_updated": None}).last_updated is None
    assert DeviceRoleRecord.from_json({"id": 2, "name": "r", "color": "ff0000"}).colour == "ff0000"


def test_problem_decodes_strings_and_host():
    rec = ProblemRecord.from_json(problem_json(123, 10501, acknowledged="1"))
    assert rec.id == 123 and rec.host_id == 10501
    assert rec.acknowledged == 1 and rec.severity == 4 and rec.clock == 1700000000
    assert rec.last_updated is None


def test_decode_records_fails_whole_list():
    good = site_json(1)
    with pytest.raises(DecodeError):
        decode_records([good, {"id": "abc", "name": "x", "last_updated": None}], SiteRecord)
    with pytest.raises(DecodeError):
        decode_records([good, "not an object"], SiteRecord)


def test_drafts_serialize_to_writable_payloads():
    site = SiteDraft(name="Akl", slug="akl", region_id=3, tenant_id=0)
    assert site.to_payload() == {"name": "Akl", "slug": "akl", "status": "active", "region": 3}

    device = DeviceDraft.from_mapping({
        "name": "sw1", "site_id": 1, "role_id": 2, "device_type_id": 3,
        "x": 10.0, "y": 20.0, "zabbix_id": 10501,
    })
    payload = device.to_payload()
    assert payload["site"] == 1 and payload["role"] == 2 and payload["device_type"] == 3
    assert payload["custom_fields"] == {"coordinate_x": 10.0, "coordinate_y": 20.0, "zabbix_id": 10501}
    assert "rack" not in payload and "serial" not in payload


def test_zero_ids_are_left_out_of_device_payload():
    payload = DeviceDraft(name="x", site_id=0, role_id=0, device_type_id=0, rack_id=0).to_payload()
    assert payload["name"] == "x"
    assert not {"site", "role", "device_type", "rack"} & set(payload)


def test_draft_mappings_reject_unknown_and_missing_keys():
    assert SiteDraft.from_mapping({"name": "A", "slug": "a"}).to_payload()["slug"] == "a"

    with pytest.raises(ConfigError, match="unknown key\\(s\\): description"):
        SiteDraft.from_mapping({"name": "A", "slug": "a", "description": "hq"})
    with pytest.raises(ConfigError, match="missing key\\(s\\): slug"):
        SiteDraft.from_mapping({"name": "A"})
    with pytest.raises(ConfigError, match="unknown key\\(s\\): colour"):
        DeviceDraft.from_mapping({"name": "sw1", "site_id": 1, "role_id": 2, "device_type_id": 3, "colour": "red"})
