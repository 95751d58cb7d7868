"""SQLAlchemy ORM models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    String,
    Float,
    Integer,
    Boolean,
    DateTime,
    Text,
    ForeignKey,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get current UTC timestamp."""
    return datetime.utcnow()


class User(Base):
    """Portal user account."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, suspended, restricted
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    # Relationships
    broker_credential = relationship(
        "BrokerCredential",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    api_keys = relationship("UserApiKey", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class UserApiKey(Base):
    """Per-user API key for programmatic access."""

    __tablename__ = "user_api_keys"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    key_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="api_keys")

    def __repr__(self) -> str:
        return f"<UserApiKey(id={self.id}, name={self.name})>"


class BrokerCredential(Base):
    """Broker credentials and connection state, one row per user.

    api_key, api_secret and access_token hold sealed values only. Rows are
    written through CredentialStore, never directly.
    """

    __tablename__ = "broker_credentials"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    api_key = Column(Text, nullable=True)
    api_secret = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)

    is_connected = Column(Boolean, default=False, nullable=False)
    balance = Column(Float, default=0.0, nullable=False)
    last_sync = Column(DateTime, nullable=True)

    request_token_digest = Column(String(64), nullable=True)
    disconnect_reason = Column(String(32), nullable=True)  # user_disconnect, token_rejected, exchange_failed

    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="broker_credential")

    def __repr__(self) -> str:
        return (
            f"<BrokerCredential(user_id={self.user_id}, connected={self.is_connected}, "
            f"version={self.version})>"
        )
