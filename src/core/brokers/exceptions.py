"""Broker link exceptions.

Every error carries the HTTP status the API maps it to, a machine-readable
code, and optional hint flags telling the client which remediation step
to route the user to.
"""

from __future__ import annotations

from typing import Dict, Optional


class BrokerLinkError(Exception):
    """Base error for the broker credential and session lifecycle."""

    status_code = 400
    code = "broker_error"
    hints: Dict[str, bool] = {}

    def __init__(self, message: Optional[str] = None, hints: Optional[Dict[str, bool]] = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        if hints is not None:
            self.hints = hints


class Unauthenticated(BrokerLinkError):
    """Not authenticated."""

    status_code = 401
    code = "unauthenticated"


class Forbidden(BrokerLinkError):
    """This action is restricted during impersonation mode for security reasons."""

    status_code = 403
    code = "impersonation_restricted"


class InvalidInput(BrokerLinkError):
    """API Key and Secret are required."""

    code = "invalid_input"


class NotFound(BrokerLinkError):
    """User not found."""

    status_code = 404
    code = "not_found"


class NotConfigured(BrokerLinkError):
    """API credentials not found. Please configure your Zerodha credentials first."""

    code = "not_configured"
    hints = {"needsCredentials": True}


class NotAuthorized(BrokerLinkError):
    """Access token not found. Please complete OAuth authorization first."""

    code = "not_authorized"
    hints = {"needsAuth": True}


class OAuthFailed(BrokerLinkError):
    """Broker authorization was declined or returned no request token."""

    code = "oauth_failed"


class ExchangeFailed(BrokerLinkError):
    """Request token exchange failed."""

    code = "token_exchange_failed"
    hints = {"needsAuth": True}

    def __init__(self, reason: str):
        super().__init__(f"Failed to get access token: {reason}")
        self.reason = reason


class Unauthorized(BrokerLinkError):
    """Broker rejected the access token. Please re-authorize your Zerodha account."""

    code = "token_rejected"
    hints = {"needsAuth": True}


class BrokerUnavailable(BrokerLinkError):
    """Broker is unreachable. Please try again."""

    code = "broker_unavailable"


class BrokerProtocolError(BrokerLinkError):
    """Broker returned a response of unexpected shape."""

    code = "broker_protocol_error"


class CredentialConflict(BrokerLinkError):
    """Broker connection changed while the request was in flight. Please retry."""

    status_code = 409
    code = "credential_conflict"


class StorageUnavailable(BrokerLinkError):
    """Credential storage is unavailable."""

    status_code = 500
    code = "storage_unavailable"


class DecodeError(BrokerLinkError):
    """Stored credential could not be unsealed."""

    status_code = 500
    code = "decode_error"
