"""Signed auth tokens issued by the auth service; the ledger only verifies them."""

import hashlib
from typing import Any

from itsdangerous import BadData, URLSafeTimedSerializer

from app.core.config import get_settings


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="zeva-auth",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def load_auth_token(token: str) -> dict[str, Any] | None:
    serializer = get_token_serializer()
    try:
        return serializer.loads(token, max_age=get_settings().auth_token_max_age_seconds)
    except BadData:
        return None
