"""
middleware/auth_middleware.py — Bearer token verification.

FairShare never issues tokens. The identity provider signs them with the
shared JWT_SECRET_KEY; this module only checks them and exposes the `sub`
claim as flask.g.user_id. Member rows point at that id through
Member.user_id.

Optional checks, enabled by config:
  JWT_AUDIENCE        — the token's `aud` must match
  JWT_ISSUER          — the token's `iss` must match
  JWT_LEEWAY_SECONDS  — clock skew tolerated on `exp`

Authentication only (401). Whether the caller may touch a group is decided
in the services (require_member() in group_service.py, 403).

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — not "Bearer <token>", bad signature, bad claims
  TOKEN_EXPIRED  (401) — signature fine, exp in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from fairshare.app.errors import AppError, ErrorCode

# Claims every identity-provider token must carry.
_REQUIRED_CLAIMS = ["exp", "sub"]


def require_auth(f: Callable) -> Callable:
    """
    Route decorator. Sets g.user_id (int) or raises a 401 AppError,
    which the app's error handler turns into the JSON envelope.

        @expenses_bp.route("/<int:group_id>/expenses", methods=["GET"])
        @require_auth
        def list_expenses(group_id):
            ... g.user_id ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = user_id_from_token(_bearer_token())
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Send the identity provider's token as "
            "'Authorization: Bearer <token>'.",
            401,
        )

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )
    return token


def user_id_from_token(token: str) -> int:
    """
    Verifies an identity-provider token and returns its user id.

    Uses the current app's JWT_* settings. Raises AppError (401) on any
    failure; callers never see a PyJWT exception.
    """
    config = current_app.config
    try:
        claims = jwt.decode(
            token,
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            audience=config.get("JWT_AUDIENCE"),
            issuer=config.get("JWT_ISSUER"),
            leeway=config.get("JWT_LEEWAY_SECONDS", 0),
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Obtain a new one from the identity provider.",
            401,
        )
    except jwt.InvalidTokenError as exc:
        # Bad signature, malformed token, missing or mismatched claims.
        current_app.logger.debug("Rejected bearer token: %s", exc)
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        return int(claims["sub"])
    except (TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim must be the numeric id of an identity-provider user.",
            401,
        )
