"""Persistence for portal users and their broker credentials."""

from .database import SessionLocal, get_db, init_db
from .models import Base, BrokerCredential, User, UserApiKey

__all__ = ["SessionLocal", "get_db", "init_db", "Base", "BrokerCredential", "User", "UserApiKey"]
