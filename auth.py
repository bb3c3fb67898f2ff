import asyncio
import logging

from fastapi import Depends, HTTPException, Request
from firebase_admin import auth as firebase_auth

from models import AuthenticatedUser, Role

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


class FirebaseAuthenticator:
    """Resolves an ID token into the caller's user id and role"""

    def __init__(self, firebase_app):
        self._app = firebase_app

    async def __call__(self, token: str) -> AuthenticatedUser:
        if not token:
            raise AuthError("Missing token")
        try:
            decoded = await asyncio.to_thread(firebase_auth.verify_id_token, token, app=self._app)
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as exc:
            raise AuthError(str(exc)) from exc

        role = decoded.get("role", Role.PARENT.value)
        try:
            return AuthenticatedUser(userId=decoded["uid"], role=Role(role))
        except ValueError as exc:
            raise AuthError(f"Unknown role {role}") from exc


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def get_current_user(request: Request) -> AuthenticatedUser:
    authenticator = getattr(request.app.state, "authenticator", None)
    if authenticator is None:
        raise HTTPException(status_code=500, detail="Authentication not initialized")

    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        return await authenticator(token)
    except AuthError as exc:
        logger.info(f"Rejected token: {exc}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def ensure_role(user: AuthenticatedUser, *roles: Role):
    if user.role not in roles:
        raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(r.value for r in roles)}")


def require_role(*roles: Role):
    """Dependency resolving the caller and rejecting other roles with 403"""
    async def dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        ensure_role(user, *roles)
        return user
    return dependency
