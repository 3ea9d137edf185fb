from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from mangrove_admin import config, main
from mangrove_admin.consoles import ConsoleRegistry
from mangrove_admin.gateway import ApiGateway
from mangrove_admin.session_store import ScopedStorage, SessionStore
from mangrove_admin.shell import AppShell

from conftest import BASE_URL, NOW, FakeResponse

LOGIN_OK = FakeResponse({"status": "success", "session_token": "tok-9", "data": {"admin_id": 7, "name": "A"}})


@pytest.fixture
def registry(storage, clock, http):
    def shell_factory(console_id):
        store = SessionStore(ScopedStorage(storage, console_id), now=clock)
        return AppShell(store, ApiGateway(store, base_url=BASE_URL, timeout=5, http=http))

    registry = ConsoleRegistry(shell_factory)
    main.configure(registry)
    return registry


@pytest.fixture
def client(registry):
    return TestClient(main.app)


def _login(client, http):
    http.routes["/login/admin_login.php"] = LOGIN_OK
    return client.post("/login", json={"email": "a@x.org", "password": "pw"})

def _reports(http, *records):
    http.routes["/admin/fetch.php"] = FakeResponse({"success": True, "data": list(records)})

def _console(client, registry):
    return registry.resolve(client.cookies.get(config.SESSION_COOKIE))


def test_public_endpoints(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/version").json()["version"] == "1.0.0"
    assert client.get("/session").json() == {"view": "authentication", "user": None}


def test_operational_routes_require_session(client, http):
    res = client.get("/reports")
    assert res.status_code == 401
    assert res.json()["view"] == "authentication"
    assert http.calls == []


def test_login_sets_console_cookie(client, http, registry):
    res = _login(client, http)

    assert res.status_code == 200
    cookie = res.headers["set-cookie"].lower()
    assert config.SESSION_COOKIE in cookie
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    assert len(registry) == 1
    assert client.get("/session").json()["view"] == "operational"


def test_login_then_reports(client, http, registry):
    res = _login(client, http)
    assert res.status_code == 200
    assert res.json()["data"]["id"] == 7
    assert _console(client, registry).shell.session_store.is_valid() is True

    _reports(http, {"id": 1, "location": "Teknaf"},
             {"id": 2, "status": "accepted", "location": {"lat": 22.3, "lng": 91.7}})
    body = client.get("/reports", params={"status": "pending"}).json()

    assert body["success"] is True
    assert [r["id"] for r in body["data"]] == [1]
    assert body["stats"]["totalReports"] == 2
    assert http.calls[-1]["headers"]["Authorization"] == "Bearer tok-9"


def test_session_is_bound_to_the_client_that_logged_in(client, http):
    _login(client, http)
    _reports(http, {"id": 1})
    assert client.get("/reports").status_code == 200
    sent = len(http.calls)

    stranger = TestClient(main.app)
    res = stranger.get("/reports")

    assert res.status_code == 401
    assert res.json()["view"] == "authentication"
    assert stranger.get("/session").json() == {"view": "authentication", "user": None}
    assert len(http.calls) == sent
    assert client.get("/reports").status_code == 200


def test_unknown_console_cookie_is_rejected(client, http):
    _login(client, http)
    forged = TestClient(main.app, cookies={config.SESSION_COOKIE: "not-a-console"})

    assert forged.get("/reports").status_code == 401
    assert forged.get("/map").status_code == 401


def test_two_operators_keep_separate_sessions(client, http, registry):
    _login(client, http)
    other = TestClient(main.app)
    http.routes["/login/admin_login.php"] = FakeResponse(
        {"success": True, "session_token": "tok-other", "data": {"id": 8, "name": "B"}})
    other.post("/login", json={"email": "b@x.org", "password": "pw"})

    assert len(registry) == 2
    assert client.get("/session").json()["user"]["id"] == 7
    assert other.get("/session").json()["user"]["id"] == 8

    _reports(http)
    other.get("/reports")
    assert http.calls[-1]["headers"]["Authorization"] == "Bearer tok-other"

    http.routes["/login/logout.php"] = FakeResponse({"success": True})
    other.post("/logout")
    assert other.get("/reports").status_code == 401
    assert client.get("/reports").status_code == 200


def test_failed_login_is_401(client, http, registry):
    http.routes["/login/admin_login.php"] = FakeResponse({"success": False, "message": "nope"})
    res = client.post("/login", json={"email": "a@x.org", "password": "bad"})
    assert res.status_code == 401
    assert res.json() == {"success": False, "data": None, "message": "nope"}
    assert config.SESSION_COOKIE not in res.headers.get("set-cookie", "")
    assert len(registry) == 0


def test_relogin_replaces_previous_console(client, http, registry):
    _login(client, http)
    first = client.cookies.get(config.SESSION_COOKIE)

    _login(client, http)

    assert client.cookies.get(config.SESSION_COOKIE) != first
    assert len(registry) == 1
    assert registry.resolve(first) is None


def test_refused_accept_is_502_and_list_unchanged(client, http, registry):
    _login(client, http)
    _reports(http, {"id": 3})
    client.get("/reports")

    http.routes["/admin/accept_reject.php"] = FakeResponse({"success": False, "message": "not found"})
    res = client.post("/reports/3/accept")

    assert res.status_code == 502
    assert res.json()["message"] == "not found"
    assert http.calls[-1]["json"] == {"id": 3, "status": "accepted"}
    assert _console(client, registry).reports_view.get(3)["status"] == "pending"


def test_confirmed_reject(client, http):
    _login(client, http)
    _reports(http, {"id": 3})
    client.get("/reports")
    http.routes["/admin/accept_reject.php"] = FakeResponse({"success": True})

    res = client.post("/reports/3/reject")

    assert res.status_code == 200
    assert res.json()["data"]["status"] == "rejected"


def test_map_charts_users_analytics(client, http):
    _login(client, http)
    _reports(http, {"id": 1, "type": "Pollution", "location": {"lat": 23.8, "lng": 90.4}},
             {"id": 2, "type": "Pollution", "location": "Teknaf"})
    http.routes["/admin/user.php"] = FakeResponse({"success": True, "data": [{"id": 1, "name": "A", "status": 1}]})
    http.routes["/admin/monthly_report.php"] = FakeResponse({"success": True, "data": [{"month": "Jan", "reports": 2}]})

    map_body = client.get("/map").json()
    assert [m["id"] for m in map_body["markers"]] == [1]
    assert map_body["counts"]["total"] == 2

    assert client.get("/charts").json()["by_type"] == {"Pollution": 2}
    assert client.get("/users", params={"status": "active"}).json()["stats"]["activeUsers"] == 1
    assert client.get("/analytics").json()["totals"]["reports"] == 2


def test_map_and_charts_reload_on_every_request(client, http):
    _login(client, http)
    _reports(http, {"id": 1, "type": "Pollution", "location": {"lat": 23.8, "lng": 90.4}})
    assert [m["id"] for m in client.get("/map").json()["markers"]] == [1]

    _reports(http, {"id": 1, "type": "Pollution", "location": {"lat": 23.8, "lng": 90.4}},
             {"id": 2, "type": "Logging", "location": {"lat": 21.4, "lng": 92.0}})

    assert [m["id"] for m in client.get("/map").json()["markers"]] == [1, 2]
    assert client.get("/charts").json()["by_type"] == {"Pollution": 1, "Logging": 1}


def test_map_after_expiry_and_relogin_shows_fresh_reports(client, http, clock):
    _login(client, http)
    _reports(http, {"id": 1, "location": {"lat": 23.8, "lng": 90.4}})
    assert [m["id"] for m in client.get("/map").json()["markers"]] == [1]

    clock.moment = NOW + timedelta(hours=25)
    assert client.get("/map").status_code == 401

    _reports(http, {"id": 2, "location": {"lat": 21.4, "lng": 92.0}})
    _login(client, http)

    assert [m["id"] for m in client.get("/map").json()["markers"]] == [2]
    assert client.get("/charts").json()["by_status"]["pending"] == 1


def test_expired_console_is_dropped(client, http, registry, clock):
    _login(client, http)
    clock.moment = NOW + timedelta(hours=25)

    assert client.get("/reports").status_code == 401
    assert len(registry) == 0
    assert client.get("/session").json() == {"view": "authentication", "user": None}


def test_stored_session_is_picked_up_by_a_new_registry(client, http, registry):
    _login(client, http)
    console_id = client.cookies.get(config.SESSION_COOKIE)

    restarted = ConsoleRegistry(registry.shell_factory)
    console = restarted.resolve(console_id)

    assert console is not None
    assert console.shell.view == "operational"
    assert console.shell.user["id"] == 7


def test_logout_always_succeeds(client, http, registry):
    _login(client, http)
    store = _console(client, registry).shell.session_store
    http.routes["/login/logout.php"] = RuntimeError("boom")

    res = client.post("/logout")

    assert res.status_code == 200
    assert res.json()["success"] is True
    assert store.is_valid() is False
    assert len(registry) == 0
    assert client.get("/reports").status_code == 401


def test_logout_without_session_succeeds(client, http):
    res = client.post("/logout")

    assert res.status_code == 200
    assert res.json()["success"] is True
    assert http.calls == []
