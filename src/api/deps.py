"""FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generator, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.config import get_settings
from src.core.auth.security import IMPERSONATOR_CLAIM, decode_access_token, verify_api_key
from src.core.brokers import BrokerSessionController, PositionSyncService, get_session_controller
from src.core.brokers.exceptions import Forbidden, Unauthenticated
from src.db.database import get_db as db_context
from src.db.models import User, UserApiKey

settings = get_settings()

# OAuth2 scheme for JWT tokens (used in Swagger UI)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

# HTTP Bearer for JWT tokens
http_bearer = HTTPBearer(auto_error=False)


@dataclass
class PortalIdentity:
    """Authenticated caller of a portal request."""

    user: User
    impersonator_id: Optional[str] = None

    @property
    def is_impersonated(self) -> bool:
        return self.impersonator_id is not None


def get_db() -> Generator[Session, None, None]:
    """Yield a database session."""
    with db_context() as db:
        yield db


def _identity_from_jwt(token: str, db: Session) -> Optional[PortalIdentity]:
    """Decode JWT token and return the identity it names."""
    payload = decode_access_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    user = db.query(User).filter(User.id == user_id).first()
    if user and user.is_active:
        return PortalIdentity(user=user, impersonator_id=payload.get(IMPERSONATOR_CLAIM))
    return None


def _identity_from_api_key(api_key: str, db: Session) -> Optional[PortalIdentity]:
    """Validate a per-user API key and return its owner."""
    api_keys = db.query(UserApiKey).filter(
        UserApiKey.is_active == True  # noqa: E712
    ).all()

    for key in api_keys:
        if key.expires_at and key.expires_at < datetime.utcnow():
            continue

        if verify_api_key(api_key, key.key_hash):
            key.last_used_at = datetime.utcnow()
            db.commit()

            user = db.query(User).filter(User.id == key.user_id).first()
            if user and user.is_active:
                return PortalIdentity(user=user)

    return None


def get_optional_identity(
    request: Request,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    x_api_key: Optional[str] = Header(None),
) -> Optional[PortalIdentity]:
    """Resolve the caller if authenticated, None otherwise.

    Checked in order:
    1. JWT Bearer token (Authorization: Bearer <token>)
    2. Session cookie holding a JWT (browser redirects carry only cookies)
    3. Per-user API key (X-API-Key header)
    """
    identity = None

    if token:
        identity = _identity_from_jwt(token, db)

    if not identity and bearer:
        identity = _identity_from_jwt(bearer.credentials, db)

    if not identity:
        cookie = request.cookies.get(settings.session_cookie_name)
        if cookie:
            identity = _identity_from_jwt(cookie, db)

    if not identity and x_api_key:
        identity = _identity_from_api_key(x_api_key, db)

    return identity


def get_current_identity(
    identity: Optional[PortalIdentity] = Depends(get_optional_identity),
) -> PortalIdentity:
    """Require an authenticated caller."""
    if identity is None:
        raise Unauthenticated()
    return identity


def get_current_user(identity: PortalIdentity = Depends(get_current_identity)) -> User:
    """Get the current authenticated user."""
    return identity.user


def require_unrestricted_identity(
    identity: PortalIdentity = Depends(get_current_identity),
) -> PortalIdentity:
    """Reject callers who may not change broker credentials.

    Admins impersonating a user, and restricted accounts, get 403.
    """
    if identity.is_impersonated:
        raise Forbidden()
    if identity.user.status == "restricted":
        raise Forbidden("This account is restricted from changing broker settings.")
    return identity


def get_controller(db: Session = Depends(get_db)) -> BrokerSessionController:
    """Session lifecycle controller bound to the request's db session."""
    return get_session_controller(db)


def get_sync_service(
    controller: BrokerSessionController = Depends(get_controller),
) -> PositionSyncService:
    """Position/margin query service sharing the request's controller."""
    return PositionSyncService(controller)
