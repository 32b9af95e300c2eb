from __future__ import annotations

from typing import Any

from jose import JWTError, jwt

from workspace_rbac.configs.settings import Settings
from workspace_rbac.errors import AuthError
from workspace_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Decode and validate JWT.

    Only identity is taken from the token; permissions are always resolved
    server-side so a revoked grant cannot survive inside a long-lived token.
    """
    try:
        options = {"verify_aud": settings.jwt_audience is not None}
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_alg],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        log.debug("jwt.decode ok sub=%s", claims.get("sub"))
        return claims
    except JWTError as e:
        log.info("jwt.decode failed: %s", str(e))
        raise AuthError("invalid token") from e
