"""Payments domain schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field


class RefundRequest(BaseModel):
    game_id: Optional[str] = Field(None, description="Game whose payments are refunded")
    scenario: Optional[str] = Field(None, description="game_cancelled, kick_player or single_rebuyer")
    user_id: Optional[int] = Field(None, description="Target player (required for kick_player)")
    rebuy_round: Optional[int] = Field(None, description="Rebuy round to refund (single_rebuyer only)")
    reason: Optional[str] = None


class RefundFailure(BaseModel):
    payment_id: int
    reason: str


class RefundResponse(BaseModel):
    game_id: str
    scenario: str
    authorized_as: str
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[RefundFailure] = Field(default_factory=list)
    target_user_id: Optional[int] = None
    rebuy_round: Optional[int] = None
    message: Optional[str] = None


class PayoutRequest(BaseModel):
    game_id: Optional[str] = None


class PayoutResponse(BaseModel):
    game_id: str
    prize_pool_minor: int = 0
    winners: int = 0
    completed: int = 0
    failed: int = 0
    already_paid: int = 0
    winners_without_connect: List[int] = Field(default_factory=list)
    message: Optional[str] = None


class CheckoutRequest(BaseModel):
    game_id: Optional[str] = None


class CheckoutResponse(BaseModel):
    game_id: str
    payment_id: int
    payment_type: str
    rebuy_round: int = 0
    session_id: str
    checkout_url: Optional[str] = None
    currency: str
    entry_fee_minor: int
    processing_fee_minor: int
    total_minor: int


class WebhookResponse(BaseModel):
    received: bool = True
    event_type: Optional[str] = None
    ignored: bool = False
    duplicate: bool = False
    reason: Optional[str] = None
    payments_updated: int = 0
    players_updated: int = 0


class ConnectAccountResponse(BaseModel):
    account_id: str
    onboarding_url: str
    created: bool = False
