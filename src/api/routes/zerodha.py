"""Zerodha broker link API routes."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.api.deps import (
    PortalIdentity,
    get_controller,
    get_current_identity,
    get_optional_identity,
    get_sync_service,
    require_unrestricted_identity,
)
from src.config import get_settings
from src.core.brokers import BrokerSessionController, PositionSyncService
from src.core.brokers.exceptions import (
    BrokerLinkError,
    BrokerProtocolError,
    BrokerUnavailable,
    CredentialConflict,
    ExchangeFailed,
    NotConfigured,
    OAuthFailed,
    Unauthorized,
)

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/zerodha", tags=["zerodha"])

# Rate limiter for credential-bearing endpoints
limiter = Limiter(key_func=get_remote_address)


# Request/Response Models

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConfigureRequest(CamelModel):
    """API key and secret from the Kite developer console."""

    api_key: Optional[str] = Field(None, alias="apiKey")
    api_secret: Optional[str] = Field(None, alias="apiSecret")


class ConfigureResponse(CamelModel):
    success: bool = True
    message: str
    is_connected: bool = Field(alias="isConnected")


class LoginUrlResponse(CamelModel):
    success: bool = True
    login_url: str = Field(alias="loginUrl")
    message: str


class ProfileResponse(BaseModel):
    user_name: str
    user_id: str
    broker: str


class TestConnectionResponse(BaseModel):
    success: bool = True
    message: str
    balance: float
    profile: ProfileResponse


class PositionResponse(BaseModel):
    symbol: str
    exchange: str
    product: str
    quantity: int
    average_price: float
    last_price: float
    pnl: float
    unrealised: float


class PositionBookResponse(BaseModel):
    net: List[PositionResponse]
    day: List[PositionResponse]


class PositionsResponse(CamelModel):
    success: bool = True
    positions: PositionBookResponse
    total_net: int = Field(alias="totalNet")
    total_day: int = Field(alias="totalDay")


class MarginsResponse(CamelModel):
    success: bool = True
    available_cash: float = Field(alias="availableCash")
    net: float
    utilised: float


class HoldingResponse(BaseModel):
    symbol: str
    exchange: str
    isin: Optional[str]
    quantity: int
    average_price: float
    last_price: float
    pnl: float


class HoldingsResponse(BaseModel):
    success: bool = True
    data: List[HoldingResponse]


class StatusResponse(CamelModel):
    success: bool = True
    status: str
    message: str
    can_trade: bool = Field(alias="canTrade")
    needs_auth: bool = Field(alias="needsAuth")
    needs_credentials: bool = Field(alias="needsCredentials")
    is_connected: bool = Field(alias="isConnected")
    has_api_key: bool = Field(alias="hasApiKey")
    has_access_token: bool = Field(alias="hasAccessToken")
    balance: float
    last_sync: Optional[datetime] = Field(alias="lastSync")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def settings_redirect(**params: str) -> RedirectResponse:
    """Redirect back to the portal settings page with status params."""
    url = f"{settings.app_base_url.rstrip('/')}/settings?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=303)


# Routes

@router.post("/configure", response_model=ConfigureResponse)
@limiter.limit("10/minute")
def configure(
    request: Request,
    body: ConfigureRequest,
    identity: PortalIdentity = Depends(require_unrestricted_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Save the user's Kite API key and secret."""
    snapshot = controller.configure(identity.user.id, body.api_key, body.api_secret)
    return ConfigureResponse(
        message="Zerodha credentials saved successfully",
        is_connected=snapshot.is_connected,
    )


@router.post("/quick-refresh", response_model=LoginUrlResponse)
def quick_refresh(
    identity: PortalIdentity = Depends(get_current_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Get the Kite login URL to (re)authorize with stored credentials."""
    login_url = controller.authorization_url(identity.user.id)
    return LoginUrlResponse(
        login_url=login_url,
        message="Ready for token refresh. You will be redirected to Zerodha for authentication.",
    )


@router.get("/callback")
@limiter.limit("20/minute")
def callback(
    request: Request,
    request_token: Optional[str] = None,
    status: Optional[str] = None,
    identity: Optional[PortalIdentity] = Depends(get_optional_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Kite redirects here after login with a request token.

    Always answers with a redirect to the settings page carrying either
    `success=<state>` or `error=<code>`.
    """
    if status != "success" or not request_token:
        logger.info(f"OAuth callback without success (status={status})")
        return settings_redirect(error=OAuthFailed.code)

    if identity is None:
        logger.info("No portal session found during OAuth callback")
        return settings_redirect(error="no_session")

    if identity.is_impersonated:
        return settings_redirect(error="impersonation_restricted")

    user_id = identity.user.id
    try:
        controller.complete_authorization(user_id, request_token, status)
    except NotConfigured:
        return settings_redirect(error="no_api_key")
    except ExchangeFailed as e:
        return settings_redirect(error=ExchangeFailed.code, details=e.reason)
    except BrokerLinkError as e:
        logger.error(f"Zerodha callback failed for user {user_id}: {e.code}")
        return settings_redirect(error=e.code)

    # Validate straight away so the user lands on a connected account
    try:
        controller.validate(user_id)
    except Unauthorized:
        return settings_redirect(error=Unauthorized.code)
    except (BrokerUnavailable, BrokerProtocolError, CredentialConflict) as e:
        logger.warning(f"Post-authorization validation deferred for user {user_id}: {e}")
        return settings_redirect(success="authorized")
    except BrokerLinkError as e:
        logger.error(f"Zerodha validation after callback failed for user {user_id}: {e.code}")
        return settings_redirect(error=e.code)

    return settings_redirect(success="connected")


@router.post("/test-connection", response_model=TestConnectionResponse)
def test_connection(
    identity: PortalIdentity = Depends(get_current_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Validate the stored access token against Kite and refresh balance."""
    result = controller.validate(identity.user.id)
    return TestConnectionResponse(
        message="Connection successful",
        balance=result.balance,
        profile=ProfileResponse(
            user_name=result.profile.display_name,
            user_id=result.profile.external_id,
            broker=result.profile.broker_name,
        ),
    )


@router.get("/positions", response_model=PositionsResponse)
def positions(
    identity: PortalIdentity = Depends(get_current_identity),
    sync_service: PositionSyncService = Depends(get_sync_service),
):
    """Open net and day positions."""
    book = sync_service.list_positions(identity.user.id)
    return PositionsResponse(
        positions=PositionBookResponse(
            net=[PositionResponse(**asdict(p)) for p in book.net],
            day=[PositionResponse(**asdict(p)) for p in book.day],
        ),
        total_net=len(book.net),
        total_day=len(book.day),
    )


@router.get("/margins", response_model=MarginsResponse)
def margins(
    identity: PortalIdentity = Depends(get_current_identity),
    sync_service: PositionSyncService = Depends(get_sync_service),
):
    """Equity margins."""
    result = sync_service.get_margins(identity.user.id)
    return MarginsResponse(
        available_cash=result.available_cash,
        net=result.net,
        utilised=result.utilised,
    )


@router.get("/holdings", response_model=HoldingsResponse)
def holdings(
    identity: PortalIdentity = Depends(get_current_identity),
    sync_service: PositionSyncService = Depends(get_sync_service),
):
    """Delivery holdings."""
    items = sync_service.list_holdings(identity.user.id)
    return HoldingsResponse(data=[HoldingResponse(**asdict(h)) for h in items])


@router.get("/status", response_model=StatusResponse)
def connection_status(
    identity: PortalIdentity = Depends(get_current_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Stored link state, without calling the broker."""
    result = controller.status(identity.user.id)
    return StatusResponse(
        status=result.state.value,
        message=result.message,
        can_trade=result.can_trade,
        needs_auth=result.needs_auth,
        needs_credentials=result.needs_credentials,
        is_connected=result.can_trade,
        has_api_key=result.has_api_key,
        has_access_token=result.has_access_token,
        balance=result.balance,
        last_sync=result.last_sync,
    )


@router.post("/disconnect", response_model=MessageResponse)
def disconnect(
    identity: PortalIdentity = Depends(require_unrestricted_identity),
    controller: BrokerSessionController = Depends(get_controller),
):
    """Forget the user's Zerodha credentials and session."""
    controller.disconnect(identity.user.id)
    return MessageResponse(message="Zerodha account disconnected successfully")
