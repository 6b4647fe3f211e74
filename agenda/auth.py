"""
Authentication on top of the hosted backend.

Backend failures are turned into AuthError with a short user-facing
message (pt-BR, as shown by the web client). The raw backend message is
kept on the exception for logging.
"""
import logging
from typing import Any, Callable, Dict, Optional

from .supabase import SupabaseClient, BackendError, Session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# (substring of backend message, user-facing message), checked in order
AUTH_MESSAGES = [
    ("invalid login credentials", "Email ou senha incorretos"),
    ("email not confirmed", "Email não confirmado. Verifique sua caixa de entrada."),
    ("user already registered", "Este email já está cadastrado. Tente fazer login."),
    ("password should be at least", f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres"),
    ("too many requests", "Muitas tentativas. Aguarde 5-10 minutos e tente novamente."),
    ("rate limit", "Limite de requisições atingido. Aguarde alguns minutos."),
]

RATE_LIMITED = "Muitas tentativas. Aguarde 5-10 minutos e tente novamente."
GENERIC_AUTH_ERROR = "Erro ao autenticar"


class AuthError(Exception):
    """Authentication failure with a message safe to show to the user."""

    def __init__(self, message: str, status: Optional[int] = None, detail: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.detail = detail

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


def describe_auth_error(error: BackendError) -> str:
    """Map a backend auth failure to the message shown to the user."""
    text = (error.message or "").lower()
    if error.status == 429 or "429" in text:
        return RATE_LIMITED
    for needle, message in AUTH_MESSAGES:
        if needle in text:
            return message
    return error.message or GENERIC_AUTH_ERROR


class AuthService:
    """Sign-up, sign-in, sign-out and password recovery."""

    def __init__(self, client: Optional[SupabaseClient]):
        self.client = client

    def _require_client(self) -> SupabaseClient:
        if self.client is None:
            raise AuthError("Autenticação indisponível no modo local", status=503)
        return self.client

    def _wrap(self, error: BackendError) -> AuthError:
        message = describe_auth_error(error)
        logger.warning(f"Auth failed: {error.status} {error.message}")
        return AuthError(message, status=error.status, detail=error.message)

    def get_session(self) -> Optional[Session]:
        return self.client.get_session() if self.client else None

    def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        """
        Create an account.

        Returns the user and whether a session was opened. When the
        backend requires email confirmation there is no session yet.
        """
        client = self._require_client()
        email = (email or "").strip()
        if not email or not password:
            raise AuthError("Informe email e senha", status=400)
        try:
            user = client.sign_up(email, password)
        except BackendError as e:
            raise self._wrap(e)
        # An obfuscated user with no identities means the email already exists
        if isinstance(user, dict) and user.get("identities") == []:
            raise AuthError("Este email já está cadastrado. Tente fazer login.", status=400)
        return {"user": user, "signedIn": client.get_session() is not None}

    def sign_in(self, email: str, password: str) -> Session:
        client = self._require_client()
        email = (email or "").strip()
        if not email or not password:
            raise AuthError("Informe email e senha", status=400)
        try:
            session = client.sign_in_with_password(email, password)
        except BackendError as e:
            raise self._wrap(e)
        logger.info(f"Signed in: {session.user_id}")
        return session

    def sign_out(self) -> None:
        self._require_client().sign_out()

    def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        client = self._require_client()
        email = (email or "").strip()
        if not email:
            raise AuthError("Digite seu email primeiro", status=400)
        try:
            client.reset_password_for_email(email, redirect_to=redirect_to)
        except BackendError as e:
            raise AuthError(
                e.message or "Erro ao enviar email de recuperação",
                status=e.status,
                detail=e.message,
            )

    def on_auth_state_change(self, callback: Callable[[str, Optional[Session]], None]) -> Callable[[], None]:
        """Subscribe to session changes; a no-op subscription in local mode."""
        if self.client is None:
            return lambda: None
        return self.client.on_auth_state_change(callback)
