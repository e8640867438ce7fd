from pulsesync.cli import main

from fakes import page, site_json, tenant_group_json, tenant_json


def _common(tmp_path, server):
    return [
        "--netbox-url", server.base_url,
        "--netbox-token", "TEST",
        "--store-url", f"sqlite:///{tmp_path / 'cli.db'}",
        "--logs-dir", str(tmp_path / "logs"),
    ]


def test_cli_sync_and_status(tmp_path, capsys, monkeypatch, server):
    monkeypatch.chdir(tmp_path)
    server.routes[("GET", "/api/tenancy/tenant-groups/")] = page([tenant_group_json(1)])
    server.routes[("GET", "/api/tenancy/tenants/")] = page([tenant_json(10), tenant_json(11)])

    code = main(["sync", "--kind", "tenant_groups", "--kind", "tenants"] + _common(tmp_path, server))
    out = capsys.readouterr().out
    assert code == 0
    assert "tenant_groups: OK | CREATED=1" in out
    assert "tenants: OK | CREATED=2 | UPDATED=0 | RELINKED=0 | UNCHANGED=0 | DELETED=0" in out
    assert {c["auth"] for c in server.calls} == {"Token TEST"}

    # second run changes nothing
    assert main(["sync", "--kind", "tenants"] + _common(tmp_path, server)) == 0
    assert "tenants: OK | CREATED=0 | UPDATED=0 | RELINKED=0 | UNCHANGED=2" in capsys.readouterr().out

    assert main(["status"] + _common(tmp_path, server)) == 0
    lines = capsys.readouterr().out.splitlines()
    assert "tenants: 2" in lines and "tenant_groups: 1" in lines and "devices: 0" in lines


def test_cli_failed_kind_sets_exit_code(tmp_path, capsys, monkeypatch, server):
    monkeypatch.chdir(tmp_path)
    server.routes[("GET", "/api/tenancy/tenants/")] = page([tenant_json(10)])
    server.routes[("GET", "/api/dcim/sites/")] = (500, {"detail": "database unavailable"})

    code = main(["sync", "--kind", "tenants", "--kind", "sites"] + _common(tmp_path, server))
    out = capsys.readouterr().out
    assert code == 2
    assert "tenants: OK" in out
    assert "sites: FAILED" in out and "database unavailable" in out


def test_cli_dry_run_commits_nothing(tmp_path, capsys, monkeypatch, server):
    monkeypatch.chdir(tmp_path)
    server.routes[("GET", "/api/tenancy/tenants/")] = page([tenant_json(10)])

    assert main(["sync", "--kind", "tenants", "--dry-run"] + _common(tmp_path, server)) == 0
    assert "CREATED=1" in capsys.readouterr().out

    main(["status"] + _common(tmp_path, server))
    assert "tenants: 0" in capsys.readouterr().out.splitlines()


def test_cli_push_site_from_yaml(tmp_path, capsys, monkeypatch, server):
    monkeypatch.chdir(tmp_path)
    server.routes[("POST", "/api/dcim/sites/")] = (201, site_json(5, name="Hamilton"))
    draft = tmp_path / "site.yml"
    draft.write_text("name: Hamilton\nslug: hamilton\nregion_id: 3\n", encoding="utf-8")

    code = main(["push-site", "--file", str(draft)] + _common(tmp_path, server))

    assert code == 0
    assert "sites: OK | CREATED=1" in capsys.readouterr().out
    assert server.calls[0]["body"] == {"name": "Hamilton", "slug": "hamilton", "status": "active", "region": 3}


def test_cli_push_site_rejects_unknown_draft_key(tmp_path, capsys, monkeypatch, server):
    monkeypatch.chdir(tmp_path)
    server.routes[("POST", "/api/dcim/sites/")] = (201, site_json(5, name="A"))
    draft = tmp_path / "site.yml"
    draft.write_text("name: A\nslug: a\ndescription: hq\n", encoding="utf-8")

    code = main(["push-site", "--file", str(draft)] + _common(tmp_path, server))

    assert code == 2
    assert "unknown key(s): description" in capsys.readouterr().err
    assert server.calls == []
