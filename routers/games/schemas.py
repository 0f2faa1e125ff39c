"""Games domain schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RoundRequest(BaseModel):
    game_id: Optional[str] = Field(None, description="Game to operate on")
    round: Optional[int] = Field(None, description="Round override; defaults to the game's current or starting round")


class TriggerSummary(BaseModel):
    triggered: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class RebuyResolution(BaseModel):
    mode: str  # continue / single_rebuyer / no_rebuyers
    rebuyers: List[int] = Field(default_factory=list)
    winners: List[int] = Field(default_factory=list)


class ProcessRoundResponse(BaseModel):
    game_id: str
    round: Optional[int] = None
    status: str
    message: Optional[str] = None
    assigned: int = 0
    eliminated: int = 0
    skipped: int = 0
    players_at_lock: Optional[int] = None
    refund_trigger: Optional[TriggerSummary] = None
    payout_trigger: Optional[TriggerSummary] = None
    rebuy_resolution: Optional[RebuyResolution] = None


class ProcessResultsResponse(BaseModel):
    game_id: str
    round: int
    message: Optional[str] = None
    picks_updated: int = 0
    eliminated: int = 0
    alive_count: int = 0
    next_status: str
    has_voided_fixtures: bool = False
    voided_users: List[int] = Field(default_factory=list)
    wipeout_detected: bool = False
    rebuy_deadline: Optional[datetime] = None
    payout_trigger: Optional[TriggerSummary] = None


class SubmitPickRequest(BaseModel):
    game_id: Optional[str] = None
    round: Optional[int] = None
    team_id: Optional[int] = None


class SubmitPickResponse(BaseModel):
    action: str  # created / updated / noop
    pick_id: int
    game_id: str
    round: int
    team_id: int


class SweepGameResult(BaseModel):
    game_id: str
    round: int
    round_status_code: Optional[int] = None
    round_outcome: str  # processed / waiting / failed
    result_status_code: Optional[int] = None
    result_outcome: Optional[str] = None
    error: Optional[str] = None


class SweepResponse(BaseModel):
    games_discovered: int
    sweep_targets: int
    round_processed: int = 0
    round_waiting: int = 0
    round_failed: int = 0
    result_processed: int = 0
    result_waiting: int = 0
    result_failed: int = 0
    results: List[SweepGameResult] = Field(default_factory=list)


class RoundRemindersResponse(BaseModel):
    checked_games: int
    reminders_sent: int
    skipped_already_sent: int
