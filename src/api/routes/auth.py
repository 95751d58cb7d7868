"""Authentication API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from src.api.deps import get_db, get_current_user
from src.config import get_settings
from src.core.auth import get_auth_service
from src.db.models import User

settings = get_settings()

router = APIRouter(prefix="/auth", tags=["auth"])

# Rate limiter for auth endpoints
limiter = Limiter(key_func=get_remote_address)


# Request/Response Models

class RegisterRequest(BaseModel):
    """User registration request."""

    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    """User login request."""

    email: str
    password: str


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    """User info response."""

    id: str
    email: str
    name: Optional[str]
    status: str
    is_active: bool
    is_admin: bool
    created_at: datetime
    last_login_at: Optional[datetime]


class AuthResponse(BaseModel):
    """Authentication response with user and token."""

    user: UserResponse
    access_token: str
    token_type: str = "bearer"


class ImpersonateRequest(BaseModel):
    """Admin request to act as another user."""

    email: str


class CreateApiKeyRequest(BaseModel):
    """Create API key request."""

    name: str
    expires_at: Optional[datetime] = None


class ApiKeyCreatedResponse(BaseModel):
    """Response when API key is created (includes plain key)."""

    id: str
    name: str
    api_key: str  # Only returned once!
    message: str = "Store this key securely - it won't be shown again"


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        status=user.status,
        is_active=user.is_active,
        is_admin=user.is_admin,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )


def _set_session_cookie(response: Response, token: str) -> None:
    """Browser redirects from the broker carry only cookies."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.app_base_url.startswith("https://"),
    )


# Public Routes (no auth required)

@router.post("/register", response_model=AuthResponse)
@limiter.limit("5/minute")  # 5 registrations per minute per IP
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    db: Session = Depends(get_db),
):
    """Register a new user account."""
    auth_service = get_auth_service(db)

    try:
        user, token = auth_service.register(
            email=body.email,
            password=body.password,
            name=body.name,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    _set_session_cookie(response, token)
    return AuthResponse(user=_user_response(user), access_token=token)


@router.post("/login", response_model=AuthResponse)
@limiter.limit("10/minute")  # 10 login attempts per minute per IP
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
):
    """Login with email and password, setting the session cookie."""
    auth_service = get_auth_service(db)

    try:
        user, token = auth_service.login(email=body.email, password=body.password)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    _set_session_cookie(response, token)
    return AuthResponse(user=_user_response(user), access_token=token)


@router.post("/token", response_model=TokenResponse)
@limiter.limit("10/minute")  # 10 token requests per minute per IP
def login_for_token(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    """OAuth2 compatible token endpoint (for Swagger UI)."""
    auth_service = get_auth_service(db)

    try:
        user, token = auth_service.login(
            email=form_data.username,  # OAuth2 uses 'username' field
            password=form_data.password,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    _set_session_cookie(response, token)
    return TokenResponse(access_token=token)


# Protected Routes (auth required)

@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    user: User = Depends(get_current_user),
):
    """Get current user info."""
    return _user_response(user)


@router.post("/impersonate", response_model=TokenResponse)
def impersonate(
    body: ImpersonateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Issue a short-lived token acting as another user (admins only)."""
    auth_service = get_auth_service(db)

    target = auth_service.get_user_by_email(body.email)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        token = auth_service.impersonate(admin=user, target=target)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    return TokenResponse(access_token=token)


@router.post("/api-keys", response_model=ApiKeyCreatedResponse)
def create_api_key(
    body: CreateApiKeyRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Create a new API key for programmatic access."""
    auth_service = get_auth_service(db)

    api_key_record, plain_key = auth_service.create_api_key(
        user=user,
        name=body.name,
        expires_at=body.expires_at,
    )

    return ApiKeyCreatedResponse(
        id=api_key_record.id,
        name=api_key_record.name,
        api_key=plain_key,
    )
