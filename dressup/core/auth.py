"""
Auth utilities for the DressUp API.

Exchanges the Supabase access token from the Authorization header for an
identity. One lookup per request, no caching or refresh.
"""
import logging
from typing import Optional

from fastapi import Depends, Header

from dressup.core.errors import UnauthorizedError
from dressup.core.gateways import get_auth_backend
from dressup.features.accounts.provider import AuthBackend
from dressup.models.account import Identity

logger = logging.getLogger("dressup")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from `Bearer <token>`; None for anything else."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_optional_identity(
    authorization: Optional[str] = Header(None),
    auth: AuthBackend = Depends(get_auth_backend),
) -> Optional[Identity]:
    """
    Resolve the caller, or None when the request is anonymous.

    Rejected or malformed tokens are treated the same as a missing header.
    """
    token = bearer_token(authorization)
    if not token:
        return None
    identity = auth.get_user(token)
    if identity is None:
        logger.info("[auth] token rejected by auth backend")
    return identity


def require_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    """
    Require an authenticated caller.

    Raises:
        UnauthorizedError (401): No valid bearer token
    """
    if identity is None:
        raise UnauthorizedError("Unauthorized")
    return identity
