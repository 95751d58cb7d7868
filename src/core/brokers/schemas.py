"""Response schemas for the Kite Connect v3 HTTP API.

Kite wraps every payload in an envelope:
    {"status": "success", "data": {...}}
    {"status": "error", "message": "...", "error_type": "TokenException"}
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class KiteModel(BaseModel):
    """Base for broker payloads; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class ErrorEnvelope(KiteModel):
    status: str = "error"
    message: str = ""
    error_type: Optional[str] = None


class SessionData(KiteModel):
    access_token: str
    user_id: Optional[str] = None


class SessionEnvelope(KiteModel):
    status: str
    data: SessionData


class ProfileData(KiteModel):
    user_id: str
    user_name: str
    broker: str
    email: Optional[str] = None


class ProfileEnvelope(KiteModel):
    status: str
    data: ProfileData


class AvailableMargin(KiteModel):
    cash: float


class UtilisedMargin(KiteModel):
    debits: float = 0.0


class SegmentMargin(KiteModel):
    net: float = 0.0
    available: AvailableMargin
    utilised: Optional[UtilisedMargin] = None


class MarginsData(KiteModel):
    equity: SegmentMargin


class MarginsEnvelope(KiteModel):
    status: str
    data: MarginsData


class PositionData(KiteModel):
    tradingsymbol: str
    exchange: str
    product: str
    quantity: int
    average_price: float
    last_price: float = 0.0
    pnl: float = 0.0
    unrealised: float = 0.0


class PositionsData(KiteModel):
    net: List[PositionData]
    day: List[PositionData]


class PositionsEnvelope(KiteModel):
    status: str
    data: PositionsData


class HoldingData(KiteModel):
    tradingsymbol: str
    exchange: str
    isin: Optional[str] = None
    quantity: int
    average_price: float
    last_price: float = 0.0
    pnl: float = 0.0


class HoldingsEnvelope(KiteModel):
    status: str
    data: List[HoldingData]
