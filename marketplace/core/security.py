from __future__ import annotations

import hmac


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_bearer_token(authorization: str | None, expected_secret: str) -> bool:
    """Constant-time comparison of an Authorization header against a pre-shared secret."""
    token = extract_bearer_token(authorization)
    if token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected_secret.encode("utf-8"))
