import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(user_id: str, max_age_hours: int = 2) -> str:
    issued = int(time.time())
    return _serializer().dumps(
        {"u": user_id, "ts": issued, "exp": issued + max_age_hours * 3600}
    )


def validate_csrf_token(token: str, user_id: str) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False
    if data.get("u") != user_id:
        return False
    return int(time.time()) <= int(data.get("exp", 0))
