"""Firebase JWT verification and role resolution."""

import logging
from typing import Any, Optional

import firebase_admin
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth, credentials, exceptions as firebase_exceptions

from app.core.config import get_settings
from app.models.enums import ActorRole

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Custom claim set by the identity provider when a role is assigned
ROLE_CLAIM = "role"


def init_firebase() -> None:
    """Initialize the Firebase Admin SDK once per process."""
    if firebase_admin._apps:
        return
    settings = get_settings()
    if settings.google_application_credentials:
        cred = credentials.Certificate(settings.google_application_credentials)
        firebase_admin.initialize_app(cred, {"projectId": settings.firebase_project_id})
    else:
        firebase_admin.initialize_app(options={"projectId": settings.firebase_project_id})


class AuthenticatedUser:
    """Represents an authenticated caller: Firebase uid plus workflow role."""

    def __init__(
        self,
        uid: str,
        role: Optional[ActorRole] = None,
        email: Optional[str] = None,
        claims: Optional[dict[str, Any]] = None,
    ):
        self.uid = uid
        self.role = role
        self.email = email
        self.claims = claims or {}

    @property
    def is_administrator(self) -> bool:
        return self.role == ActorRole.ADMINISTRATOR

    def __repr__(self) -> str:
        role = self.role.value if self.role else None
        return f"AuthenticatedUser(uid={self.uid!r}, role={role!r})"


def role_from_claims(claims: dict[str, Any]) -> Optional[ActorRole]:
    value = claims.get(ROLE_CLAIM)
    if not value:
        return None
    try:
        return ActorRole(str(value).lower())
    except ValueError:
        return None


async def verify_firebase_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthenticatedUser:
    """Verify Firebase JWT and return authenticated user.

    This NEVER mints JWTs - it only verifies tokens issued by Firebase.
    """
    init_firebase()
    token = credentials.credentials

    try:
        decoded_token = auth.verify_id_token(token)
    except auth.ExpiredIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except auth.InvalidIdTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        logger.warning(f"[AUTH] Token verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthenticatedUser(
        uid=decoded_token["uid"],
        role=role_from_claims(decoded_token),
        email=decoded_token.get("email"),
        claims=decoded_token,
    )


async def get_current_user(
    auth_user: AuthenticatedUser = Depends(verify_firebase_token),
) -> AuthenticatedUser:
    """Authenticated caller with a known workflow role."""
    if auth_user.role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No role assigned to this account",
        )
    return auth_user


def require_administrator(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Require the administrator role."""
    if not current_user.is_administrator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return current_user
