import pytest
from itsdangerous import URLSafeTimedSerializer

from auth import SIGNED_IN, SIGNED_OUT, NotAuthenticated, SessionAuth
from csrf import generate_csrf_token, validate_csrf_token


def make_auth() -> SessionAuth:
    return SessionAuth("session-secret", "identity-secret", max_age_hours=1)


def identity_token(payload, secret: str = "identity-secret") -> str:
    return URLSafeTimedSerializer(secret, salt="identity").dumps(payload)


def test_identity_exchange_and_session_round_trip() -> None:
    auth = make_auth()
    user_id = auth.verify_identity(identity_token({"sub": "user-1"}))
    assert user_id == "user-1"

    token = auth.sign_in(user_id)
    assert auth.current_user_id(token) == "user-1"
    assert auth.require_user_id(token) == "user-1"


def test_bad_tokens_are_not_authenticated() -> None:
    auth = make_auth()
    with pytest.raises(NotAuthenticated):
        auth.verify_identity(identity_token({"sub": "user-1"}, secret="wrong"))
    with pytest.raises(NotAuthenticated):
        auth.verify_identity(identity_token({"sub": "  "}))

    assert auth.current_user_id(None) is None
    assert auth.current_user_id("garbage") is None
    other = SessionAuth("other-secret", "identity-secret")
    assert auth.current_user_id(other.sign_in("user-1")) is None
    with pytest.raises(NotAuthenticated):
        auth.require_user_id("")


def test_auth_listeners_receive_changes_until_unsubscribed() -> None:
    auth = make_auth()
    events = []
    unsubscribe = auth.on_auth_change(lambda event, user: events.append((event, user)))

    def broken(event, user):
        raise RuntimeError("listener bug")

    auth.on_auth_change(broken)
    auth.sign_in("user-1")
    auth.sign_out("user-1")
    unsubscribe()
    auth.sign_in("user-2")

    assert events == [(SIGNED_IN, "user-1"), (SIGNED_OUT, "user-1")]


def test_csrf_token_is_bound_to_user() -> None:
    token = generate_csrf_token("user-1")
    assert validate_csrf_token(token, "user-1")
    assert not validate_csrf_token(token, "user-2")
    assert not validate_csrf_token("", "user-1")
    assert not validate_csrf_token(token + "x", "user-1")


def test_csrf_token_expires(monkeypatch) -> None:
    import csrf

    token = generate_csrf_token("user-1", max_age_hours=1)
    real_time = csrf.time.time
    monkeypatch.setattr(csrf.time, "time", lambda: real_time() + 2 * 3600)
    assert not validate_csrf_token(token, "user-1")
