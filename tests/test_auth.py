"""
Tests for authentication and user-facing auth messages.
"""
from unittest.mock import MagicMock

import pytest

from agenda.auth import AuthService, AuthError, describe_auth_error, RATE_LIMITED
from agenda.supabase import BackendError, Session


@pytest.mark.parametrize("message,expected", [
    ("Invalid login credentials", "Email ou senha incorretos"),
    ("Email not confirmed", "Email não confirmado. Verifique sua caixa de entrada."),
    ("User already registered", "Este email já está cadastrado. Tente fazer login."),
    ("Password should be at least 6 characters", "A senha deve ter pelo menos 6 caracteres"),
    ("Something unexpected", "Something unexpected"),
])
def test_describe_auth_error(message, expected):
    assert describe_auth_error(BackendError(message, status=400)) == expected


def test_rate_limit_detected_by_status():
    assert describe_auth_error(BackendError("slow down", status=429)) == RATE_LIMITED


def test_local_mode_rejects_auth():
    service = AuthService(None)
    assert service.get_session() is None
    with pytest.raises(AuthError) as exc:
        service.sign_in("a@b.com", "secret")
    assert exc.value.status == 503
    # Subscribing is harmless without a backend
    service.on_auth_state_change(lambda e, s: None)()


def test_sign_in_maps_backend_failure():
    client = MagicMock()
    client.sign_in_with_password.side_effect = BackendError("Invalid login credentials", status=400)
    with pytest.raises(AuthError) as exc:
        AuthService(client).sign_in("a@b.com", "wrong")
    assert exc.value.message == "Email ou senha incorretos"
    assert exc.value.detail == "Invalid login credentials"


def test_sign_in_rate_limited():
    client = MagicMock()
    client.sign_in_with_password.side_effect = BackendError("Too many requests", status=429)
    with pytest.raises(AuthError) as exc:
        AuthService(client).sign_in("a@b.com", "pw1234")
    assert exc.value.rate_limited


def test_sign_in_requires_fields():
    with pytest.raises(AuthError):
        AuthService(MagicMock()).sign_in(" ", "pw")


def test_sign_up_existing_email_detected():
    client = MagicMock()
    client.sign_up.return_value = {"id": "u1", "identities": []}
    with pytest.raises(AuthError) as exc:
        AuthService(client).sign_up("a@b.com", "pw1234")
    assert "cadastrado" in exc.value.message


def test_sign_up_without_session():
    client = MagicMock()
    client.sign_up.return_value = {"id": "u1", "identities": [{"id": "i1"}]}
    client.get_session.return_value = None
    result = AuthService(client).sign_up("a@b.com", "pw1234")
    assert result == {"user": {"id": "u1", "identities": [{"id": "i1"}]}, "signedIn": False}


def test_sign_in_returns_session():
    client = MagicMock()
    session = Session(access_token="t", user={"id": "u1"})
    client.sign_in_with_password.return_value = session
    assert AuthService(client).sign_in(" a@b.com ", "pw1234") is session
    client.sign_in_with_password.assert_called_once_with("a@b.com", "pw1234")


def test_reset_password_requires_email():
    client = MagicMock()
    with pytest.raises(AuthError) as exc:
        AuthService(client).reset_password("")
    assert exc.value.message == "Digite seu email primeiro"
    AuthService(client).reset_password("a@b.com", "https://app/reset")
    client.reset_password_for_email.assert_called_once_with("a@b.com", redirect_to="https://app/reset")
