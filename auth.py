"""Session handling on top of an external identity provider.

The provider signs ``{"sub": <user id>}`` with the shared identity secret; the
app exchanges that for its own signed session cookie. Nothing here knows about
passwords or sign-up.
"""

import logging
from typing import Callable, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "budget_session"
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthListener = Callable[[str, Optional[str]], None]


class NotAuthenticated(Exception):
    pass


class SessionAuth:
    def __init__(
        self,
        session_secret: str,
        identity_secret: str,
        max_age_hours: int = 24,
    ) -> None:
        self._sessions = URLSafeTimedSerializer(session_secret, salt="session")
        self._identity = URLSafeTimedSerializer(identity_secret, salt="identity")
        self.max_age_secs = max_age_hours * 3600
        self._listeners: list[AuthListener] = []

    @classmethod
    def from_settings(cls) -> "SessionAuth":
        settings = get_settings()
        return cls(
            settings.session_secret,
            settings.identity_secret,
            settings.session_max_age_hours,
        )

    def on_auth_change(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, event: str, user_id: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, user_id)
            except Exception:
                logger.exception(f"auth_listener_failed: event={event}")

    def verify_identity(self, token: str) -> str:
        try:
            data = self._identity.loads(token, max_age=self.max_age_secs)
        except (BadSignature, SignatureExpired) as exc:
            raise NotAuthenticated("Invalid identity token") from exc
        user_id = str(data.get("sub") or "").strip() if isinstance(data, dict) else ""
        if not user_id:
            raise NotAuthenticated("Identity token has no subject")
        return user_id

    def sign_in(self, user_id: str) -> str:
        """Return a session token for ``user_id`` and notify listeners."""
        token = self._sessions.dumps({"u": user_id})
        logger.info(f"auth: event={SIGNED_IN} user={user_id}")
        self._notify(SIGNED_IN, user_id)
        return token

    def sign_out(self, user_id: Optional[str]) -> None:
        logger.info(f"auth: event={SIGNED_OUT} user={user_id}")
        self._notify(SIGNED_OUT, user_id)

    def current_user_id(self, session_token: Optional[str]) -> Optional[str]:
        if not session_token:
            return None
        try:
            data = self._sessions.loads(session_token, max_age=self.max_age_secs)
        except (BadSignature, SignatureExpired):
            return None
        if not isinstance(data, dict):
            return None
        return data.get("u") or None

    def require_user_id(self, session_token: Optional[str]) -> str:
        user_id = self.current_user_id(session_token)
        if not user_id:
            raise NotAuthenticated("Not signed in")
        return user_id
