"""
Tests for the hosted backend HTTP client.
"""
from unittest.mock import MagicMock

import pytest
import requests

from agenda.supabase import SupabaseClient, BackendError, Session


def response(status=200, body=None):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.reason = "Bad Request" if status >= 400 else "OK"
    r.content = b"" if body is None else b"{}"
    r.json.return_value = body
    return r


@pytest.fixture
def client():
    c = SupabaseClient("https://abc.supabase.co/", "anon-key", timeout=5)
    c.http = MagicMock()
    return c


def test_select_builds_postgrest_params(client):
    client.http.request.return_value = response(200, [{"id": "t1"}])
    rows = client.select("tasks", "id, text", {"workspace_id": "w1", "category": None},
                         order="created_at", ascending=False, limit=10)
    assert rows == [{"id": "t1"}]

    method, url = client.http.request.call_args.args
    kwargs = client.http.request.call_args.kwargs
    assert method == "GET"
    assert url == "https://abc.supabase.co/rest/v1/tasks"
    assert kwargs["params"] == {
        "select": "id, text",
        "workspace_id": "eq.w1",
        "category": "is.null",
        "order": "created_at.desc",
        "limit": "10",
    }
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert kwargs["headers"]["Authorization"] == "Bearer anon-key"
    assert kwargs["timeout"] == 5


def test_insert_prefer_header(client):
    client.http.request.return_value = response(201, None)
    assert client.insert("categories", {"name": "x"}, returning=False) == []
    headers = client.http.request.call_args.kwargs["headers"]
    assert headers["Prefer"] == "return=minimal"


def test_upsert_merges_duplicates(client):
    client.http.request.return_value = response(201, [])
    client.upsert("settings", [{"key": "darkMode"}], on_conflict="workspace_id,key")
    kwargs = client.http.request.call_args.kwargs
    assert kwargs["params"] == {"on_conflict": "workspace_id,key"}
    assert "merge-duplicates" in kwargs["headers"]["Prefer"]


def test_error_body_becomes_backend_error(client):
    client.http.request.return_value = response(
        409, {"message": "duplicate key value", "code": "23505"}
    )
    with pytest.raises(BackendError) as exc:
        client.insert("categories", {"name": "x"})
    assert exc.value.status == 409
    assert exc.value.code == "23505"
    assert exc.value.message == "duplicate key value"


def test_network_failure_becomes_backend_error(client):
    client.http.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(BackendError) as exc:
        client.select("tasks")
    assert "unreachable" in exc.value.message


def test_sign_in_sets_session_and_notifies(client):
    client.http.request.return_value = response(200, {
        "access_token": "jwt", "refresh_token": "r", "expires_in": 3600,
        "user": {"id": "u1", "email": "ana@example.com"},
    })
    events = []
    unsubscribe = client.on_auth_state_change(lambda event, session: events.append(event))

    session = client.sign_in_with_password("ana@example.com", "pw")
    assert session.user_id == "u1"
    assert client.get_session() is session
    assert events == ["SIGNED_IN"]
    assert client.http.request.call_args.kwargs["params"] == {"grant_type": "password"}

    # Authenticated calls now carry the user token
    client.http.request.return_value = response(200, [])
    client.select("tasks")
    assert client.http.request.call_args.kwargs["headers"]["Authorization"] == "Bearer jwt"

    unsubscribe()
    client.set_session(None)
    assert events == ["SIGNED_IN"]


def test_sign_in_error_message(client):
    client.http.request.return_value = response(400, {
        "error": "invalid_grant", "error_description": "Invalid login credentials",
    })
    with pytest.raises(BackendError) as exc:
        client.sign_in_with_password("a@b.com", "bad")
    assert exc.value.message == "Invalid login credentials"
    assert client.get_session() is None


def test_sign_out_always_clears_session(client):
    client.session = Session(access_token="jwt", user={"id": "u1"})
    client.http.request.return_value = response(500, {"msg": "oops"})
    events = []
    client.on_auth_state_change(lambda event, session: events.append((event, session)))

    client.sign_out()
    assert client.get_session() is None
    assert events == [("SIGNED_OUT", None)]


def test_sign_up_without_confirmation_returns_user(client):
    client.http.request.return_value = response(200, {"id": "u1", "email": "a@b.com"})
    user = client.sign_up("a@b.com", "pw1234")
    assert user["id"] == "u1"
    assert client.get_session() is None


def test_get_user_requires_session(client):
    with pytest.raises(BackendError) as exc:
        client.get_user()
    assert exc.value.status == 401


def test_listener_errors_do_not_break_emit(client):
    seen = []

    def broken(event, session):
        raise RuntimeError("listener bug")

    client.on_auth_state_change(broken)
    client.on_auth_state_change(lambda event, session: seen.append(event))
    client.set_session(Session(access_token="t"))
    assert seen == ["SIGNED_IN"]


def test_expired_token_is_refreshed_and_request_replayed(client):
    client.session = Session(access_token="old", refresh_token="r1",
                             user={"id": "u1", "email": "ana@example.com"})
    client.http.request.side_effect = [
        response(401, {"message": "JWT expired"}),
        response(200, {"access_token": "new", "refresh_token": "r2", "expires_in": 3600}),
        response(200, [{"id": "t1"}]),
    ]
    events = []
    client.on_auth_state_change(lambda event, session: events.append(event))

    assert client.select("tasks") == [{"id": "t1"}]

    calls = client.http.request.call_args_list
    assert calls[1].args[1] == "https://abc.supabase.co/auth/v1/token"
    assert calls[1].kwargs["params"] == {"grant_type": "refresh_token"}
    assert calls[1].kwargs["json"] == {"refresh_token": "r1"}
    assert calls[2].kwargs["headers"]["Authorization"] == "Bearer new"
    assert client.session.refresh_token == "r2"
    # The token response carried no user; the signed-in user is kept
    assert client.session.user_id == "u1"
    assert events == ["TOKEN_REFRESHED"]


def test_failed_refresh_raises_without_looping(client):
    client.session = Session(access_token="old", refresh_token="revoked", user={"id": "u1"})
    client.http.request.side_effect = [
        response(401, {"message": "JWT expired"}),
        response(401, {"error_description": "Invalid Refresh Token"}),
    ]
    with pytest.raises(BackendError) as exc:
        client.select("tasks")
    assert exc.value.status == 401
    assert exc.value.message == "Invalid Refresh Token"
    assert client.http.request.call_count == 2


def test_unauthorized_without_session_is_not_retried(client):
    client.http.request.return_value = response(401, {"message": "No API key"})
    with pytest.raises(BackendError):
        client.select("tasks")
    assert client.http.request.call_count == 1
