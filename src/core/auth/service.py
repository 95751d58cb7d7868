"""Authentication service for portal identities."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from src.db.models import BrokerCredential, User, UserApiKey
from src.core.auth.security import (
    IMPERSONATION_EXPIRE_MINUTES,
    IMPERSONATOR_CLAIM,
    create_access_token,
    generate_api_key,
    get_password_hash,
    hash_api_key,
    verify_password,
)


class AuthService:
    """Service for user authentication and management."""

    def __init__(self, db: Session):
        self.db = db

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get a user by email address."""
        return self.db.query(User).filter(User.email == email).first()

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def register(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        is_admin: bool = False,
    ) -> Tuple[User, str]:
        """Register a new user.

        Every account starts with an empty broker credential record.

        Returns:
            Tuple of (user, access_token)

        Raises:
            ValueError: If email already exists
        """
        existing = self.get_user_by_email(email)
        if existing:
            raise ValueError(f"Email '{email}' is already registered")

        user = User(
            email=email,
            name=name,
            password_hash=get_password_hash(password),
            is_active=True,
            is_admin=is_admin,
        )
        self.db.add(user)
        self.db.flush()  # Get the user ID

        self.db.add(BrokerCredential(user_id=user.id, is_connected=False, balance=0.0, version=0))
        self.db.commit()

        token = create_access_token(data={"sub": user.id})
        return user, token

    def login(self, email: str, password: str) -> Tuple[User, str]:
        """Authenticate a user and return access token.

        Raises:
            ValueError: If credentials are invalid
        """
        user = self.get_user_by_email(email)
        if not user or not user.password_hash:
            raise ValueError("Invalid email or password")

        if not verify_password(password, user.password_hash):
            raise ValueError("Invalid email or password")

        if not user.is_active or user.status == "suspended":
            raise ValueError("User account is disabled")

        user.last_login_at = datetime.utcnow()
        self.db.commit()

        token = create_access_token(data={"sub": user.id})
        return user, token

    def issue_token(self, user: User) -> str:
        """Issue an access token without a password check (CLI use)."""
        return create_access_token(data={"sub": user.id})

    def impersonate(self, admin: User, target: User) -> str:
        """Issue a short-lived token acting as `target` on behalf of `admin`.

        Impersonation tokens may read but not change broker credentials.

        Raises:
            ValueError: If `admin` is not an admin
        """
        if not admin.is_admin:
            raise ValueError("Only admins can impersonate users")

        return create_access_token(
            data={"sub": target.id, IMPERSONATOR_CLAIM: admin.id},
            expires_delta=timedelta(minutes=IMPERSONATION_EXPIRE_MINUTES),
        )

    def create_api_key(
        self,
        user: User,
        name: str,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[UserApiKey, str]:
        """Create a new API key for a user.

        Returns:
            Tuple of (api_key_record, plain_api_key)
            Note: The plain key is only returned once!
        """
        plain_key = generate_api_key()

        api_key = UserApiKey(
            user_id=user.id,
            key_hash=hash_api_key(plain_key),
            name=name,
            expires_at=expires_at,
            is_active=True,
        )
        self.db.add(api_key)
        self.db.commit()

        return api_key, plain_key


def get_auth_service(db: Session) -> AuthService:
    """Factory function to get an AuthService instance."""
    return AuthService(db)
