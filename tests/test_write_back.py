from pulsesync.core.errors import RequestFailedError
from pulsesync.core.models import Device, Site
from pulsesync.core.orchestrator import FAILED, OK, SyncOrchestrator
from pulsesync.core.records import DeviceDraft, SiteDraft
from pulsesync.core.status import RequestStatus

from fakes import device_json, page, site_json


def test_push_site_creates_locally_from_response(server, store, make_config):
    server.routes[("POST", "/api/dcim/sites/")] = (201, site_json(77, name="Auckland"))
    orch = SyncOrchestrator(make_config(server.base_url), store)

    result = orch.push_site(SiteDraft(name="Auckland", slug="auckland"))

    assert result.status == OK and result.counts["CREATED"] == 1
    assert server.calls[0]["body"] == {"name": "Auckland", "slug": "auckland", "status": "active"}
    with store.read_session() as session:
        assert session.get(Site, 77).name == "Auckland"


def test_push_device_update_keeps_other_devices(server, store, make_config):
    server.routes[("GET", "/api/dcim/devices/")] = page([device_json(i, name=f"d{i}") for i in (1, 2, 3)])
    server.routes[("PATCH", "/api/dcim/devices/2/")] = (200, device_json(2, name="core-sw", updated=30))
    orch = SyncOrchestrator(make_config(server.base_url), store)
    assert orch.sync_kind("devices").status == OK

    draft = DeviceDraft.from_mapping({"name": "core-sw", "site_id": 1, "role_id": 1, "device_type_id": 1})
    result = orch.push_device(draft, device_id=2)

    assert result.status == OK
    assert result.counts["UPDATED"] == 1 and result.counts["DELETED"] == 0
    assert server.calls[-1]["method"] == "PATCH"
    assert server.calls[-1]["body"]["name"] == "core-sw"
    assert store.count(Device) == 3
    with store.read_session() as session:
        assert session.get(Device, 2).name == "core-sw"


def test_rejected_write_returns_failed_and_changes_nothing(server, store, make_config):
    server.routes[("POST", "/api/dcim/devices/")] = (400, {"detail": "site: This field is required."})
    orch = SyncOrchestrator(make_config(server.base_url), store)

    result = orch.push_device(DeviceDraft(name="x", site_id=0, role_id=1, device_type_id=1))

    assert result.status == FAILED
    assert isinstance(result.error, RequestFailedError) and result.error.status == 400
    assert result.error.kind == "devices"
    assert store.count(Device) == 0
    assert orch.status.get("netbox") is RequestStatus.UNKNOWN_ERROR
