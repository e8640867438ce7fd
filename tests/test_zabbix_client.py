import pytest

from pulsesync.core.errors import ConfigurationMissingError, JsonRpcError, RequestFailedError
from pulsesync.core.records import ProblemRecord
from pulsesync.core.zabbix_client import ZabbixClient

from fakes import problem_json

RPC = "/zabbix/api_jsonrpc.php"


def _rpc_route(problems, *, token="SESSION1", expire_first=False):
    state = {"logins": 0, "pending_expiry": expire_first}

    def route(handler, call):
        body = call["body"]
        method = body["method"]
        if method == "user.login":
            state["logins"] += 1
            if body["params"] != {"username": "api", "password": "secret"}:
                return 200, {"jsonrpc": "2.0", "error": {"code": -32602, "message": "Invalid params.",
                                                         "data": "Incorrect user name or password."}, "id": 1}
            return 200, {"jsonrpc": "2.0", "result": f"{token}-{state['logins']}", "id": 1}
        if state["pending_expiry"]:
            state["pending_expiry"] = False
            return 200, {"jsonrpc": "2.0", "error": {"code": -32602, "message": "Invalid params.",
                                                     "data": "Session terminated, re-login, please."}, "id": 1}
        if method == "problem.get":
            return 200, {"jsonrpc": "2.0", "result": problems, "id": 1}
        if method == "event.acknowledge":
            return 200, {"jsonrpc": "2.0", "result": {"eventids": body["params"]["eventids"]}, "id": 1}
        return 200, {"jsonrpc": "2.0", "error": {"code": -32601, "message": "Method not found."}, "id": 1}

    return route, state


def test_login_then_bearer_session_on_calls(server):
    route, state = _rpc_route([problem_json(11, 501), problem_json(12, 502)])
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")

    problems = client.get_problems(host_ids=[501, 502])

    assert [p.id for p in problems] == [11, 12]
    assert all(isinstance(p, ProblemRecord) for p in problems)
    login, call = server.calls
    assert login["body"]["method"] == "user.login" and login["auth"] is None
    assert call["auth"] == "Bearer SESSION1-1"
    assert call["content_type"] == "application/json-rpc"
    assert call["body"]["jsonrpc"] == "2.0" and call["body"]["id"] == 1
    params = call["body"]["params"]
    assert params["hostids"] == ["501", "502"]
    assert params["recent"] is True and params["sortorder"] == "DESC"
    assert state["logins"] == 1


def test_session_is_reused(server):
    route, state = _rpc_route([])
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")
    client.get_problems(host_ids=[1])
    client.get_problems(event_ids=[2])
    assert state["logins"] == 1
    assert server.calls[-1]["body"]["params"]["eventids"] == ["2"]


def test_expired_session_logs_in_again_once(server):
    route, state = _rpc_route([problem_json(1, 2)], expire_first=True)
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")

    problems = client.get_problems(host_ids=[2])

    assert [p.id for p in problems] == [1]
    assert state["logins"] == 2
    assert server.calls[-1]["auth"] == "Bearer SESSION1-2"


def test_error_member_raises_json_rpc_error(server):
    route, _ = _rpc_route([])
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")
    with pytest.raises(JsonRpcError) as exc:
        client.call("host.nonexistent", {})
    assert exc.value.code == -32601
    assert exc.value.method == "host.nonexistent"
    assert isinstance(exc.value, RequestFailedError)


def test_bad_credentials_fail_login(server):
    route, _ = _rpc_route([])
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "wrong")
    with pytest.raises(JsonRpcError) as exc:
        client.get_problems(host_ids=[1])
    assert exc.value.method == "user.login"
    assert not client.authenticated


def test_http_error_is_request_failed(server):
    server.routes[("POST", RPC)] = (502, "bad gateway")
    client = ZabbixClient(server.base_url, "api", "secret")
    with pytest.raises(RequestFailedError) as exc:
        client.login()
    assert exc.value.status == 502


def test_acknowledge_sends_params(server):
    route, _ = _rpc_route([])
    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")

    acked = client.acknowledge([7, 8], 6, message="on it")

    assert acked == [7, 8]
    params = server.calls[-1]["body"]["params"]
    assert params == {"eventids": ["7", "8"], "action": 6, "message": "on it"}


@pytest.mark.parametrize(
    "url,user,password,missing",
    [("", "api", "pw", "zabbix.base_url"), ("http://z", "", "pw", "zabbix.user"), ("http://z", "api", "", "zabbix.password")],
)
def test_missing_settings_fail_fast(url, user, password, missing):
    with pytest.raises(ConfigurationMissingError) as exc:
        ZabbixClient(url, user, password)
    assert exc.value.setting == missing


def test_event_window_and_logout(server):
    seen = []

    def route(handler, call):
        body = call["body"]
        seen.append(body["method"])
        if body["method"] == "user.login":
            return 200, {"jsonrpc": "2.0", "result": "S", "id": 1}
        if body["method"] == "event.get":
            return 200, {"jsonrpc": "2.0", "result": [{"eventid": "5"}], "id": 1}
        return 200, {"jsonrpc": "2.0", "result": True, "id": 1}

    server.routes[("POST", RPC)] = route
    client = ZabbixClient(server.base_url, "api", "secret")

    events = client.get_events([501], time_till=10_000, window_sec=600)

    assert events == [{"eventid": "5"}]
    params = server.calls[-1]["body"]["params"]
    assert params["problem_time_from"] == 9_400 and params["problem_time_till"] == 10_000
    assert params["hostids"] == ["501"]

    client.logout()
    assert seen == ["user.login", "event.get", "user.logout"]
    assert server.calls[-1]["auth"] == "Bearer S"
    assert not client.authenticated
