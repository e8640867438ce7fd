import pytest

from pulsesync.core.config import load_config
from pulsesync.core.store import LocalStore

from fakes import start_server


@pytest.fixture
def store(tmp_path):
    s = LocalStore(f"sqlite:///{tmp_path / 'pulse.db'}")
    s.create_all()
    yield s
    s.dispose()


@pytest.fixture
def server():
    srv = start_server()
    yield srv
    srv.stop()


@pytest.fixture
def make_config():
    def _make(netbox_url="", zabbix_url="", **sections):
        overrides = {
            "netbox": {"base_url": netbox_url, "token": "NBTOKEN"},
            "zabbix": {"base_url": zabbix_url, "user": "api", "password": "secret"},
        }
        for name, values in sections.items():
            overrides.setdefault(name, {}).update(values)
        return load_config(overrides, files=(), dotenv=False)
    return _make
