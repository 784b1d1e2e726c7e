"""
Credential Resolver
===================
Bearer token first (mobile), then the session cookie (web). Never raises for
"not logged in"; callers decide how to reject a missing principal.
"""
from __future__ import annotations

import logging

import companion.database as database

logger = logging.getLogger(__name__)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def resolve_bearer(authorization: str | None) -> dict | None:
    token = bearer_token(authorization)
    if token is None:
        return None
    user = await database.get_user_by_token(token, kind="bearer")
    if user is None:
        logger.info("[auth] bearer token rejected")
    return user


async def resolve_principal(authorization: str | None, session_cookie: str | None) -> dict | None:
    user = await resolve_bearer(authorization)
    if user is not None:
        return user

    if session_cookie:
        return await database.get_user_by_token(session_cookie, kind="cookie")
    return None
