"""Portal identity: accounts, JWT sessions and impersonation."""

from .service import AuthService, get_auth_service
from .security import IMPERSONATOR_CLAIM, create_access_token, decode_access_token

__all__ = [
    "AuthService",
    "get_auth_service",
    "IMPERSONATOR_CLAIM",
    "create_access_token",
    "decode_access_token",
]
