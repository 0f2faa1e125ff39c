from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, BigInteger, UniqueConstraint, Text, JSON, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
import uuid
import random
from enum import Enum as PyEnum
from datetime import datetime
from db import Base


def generate_account_id():
    """Generate a 10-digit random unique number."""
    return int("".join(str(random.randint(1 if i == 0 else 0, 9)) for i in range(10)))


def generate_game_id():
    return str(uuid.uuid4())


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =================================
#  Status vocabularies
# =================================
class GameStatus:
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    OPEN = (PENDING, ACTIVE)
    TERMINAL = (COMPLETED, CANCELLED)


class WipeoutMode:
    SPLIT = "split"
    REBUY = "rebuy"


class PlayerStatus:
    ALIVE = "alive"
    ELIMINATED = "eliminated"
    KICKED = "kicked"


class PickResult:
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    DRAW = "draw"
    VOIDED = "voided"

    # Results that may still be overwritten when a round is (re)settled
    SETTLEABLE = (PENDING, VOIDED)


class FixtureStatus:
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"


class PaymentType:
    ENTRY = "entry"
    REBUY = "rebuy"


class PaymentStatus:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"

    REFUNDABLE = (SUCCEEDED, REFUND_FAILED)


class PayoutStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundScenario(str, PyEnum):
    GAME_CANCELLED = "game_cancelled"
    KICK_PLAYER = "kick_player"
    SINGLE_REBUYER = "single_rebuyer"


# =================================
#  Users Table
# =================================
class User(Base):
    __tablename__ = "users"

    account_id = Column(BigInteger, primary_key=True, unique=True, index=True, nullable=False, default=generate_account_id)
    descope_user_id = Column(String, unique=True, index=True, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    is_admin = Column(Boolean, default=False)
    notification_on = Column(Boolean, default=True)  # Also gates outbound email

    # Stripe Connect destination for prize payouts
    stripe_connect_account_id = Column(String, nullable=True, index=True)

    sign_up_date = Column(DateTime, default=datetime.utcnow, nullable=False)


# =================================
#  Teams & Fixtures (written by the results feed sync)
# =================================
class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    short_name = Column(String, nullable=True)
    external_id = Column(String, nullable=True, unique=True)


class Fixture(Base):
    __tablename__ = "fixtures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round = Column(Integer, nullable=False, index=True)
    home_team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default=FixtureStatus.SCHEDULED)
    kickoff_time = Column(DateTime, nullable=False)
    external_id = Column(String, nullable=True, unique=True)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])


# =================================
#  Games
# =================================
class Game(Base):
    __tablename__ = "games"

    id = Column(String, primary_key=True, default=generate_game_id)
    name = Column(String, nullable=False)
    code = Column(String, unique=True, nullable=True)
    manager_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=GameStatus.PENDING, index=True)  # pending/active/completed/cancelled
    current_round = Column(Integer, nullable=True)
    starting_round = Column(Integer, nullable=False, default=1)
    min_players = Column(Integer, nullable=False, default=2)
    max_players = Column(Integer, nullable=True)
    entry_fee_minor = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, nullable=False, default="eur")
    wipeout_mode = Column(String, nullable=False, default=WipeoutMode.SPLIT)  # split/rebuy
    rebuy_deadline = Column(DateTime, nullable=True)
    prize_pool_minor = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    players = relationship("GamePlayer", back_populates="game")


class GamePlayer(Base):
    __tablename__ = "game_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=PlayerStatus.ALIVE)  # alive/eliminated/kicked
    eliminated_round = Column(Integer, nullable=True)
    is_rebuy = Column(Boolean, nullable=False, default=False)
    kick_reason = Column(String, nullable=True)
    stripe_payment_id = Column(String, nullable=True, index=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    game = relationship("Game", back_populates="players")

    __table_args__ = (
        UniqueConstraint("game_id", "user_id", name="uq_game_players_game_user"),
    )


class Pick(Base):
    __tablename__ = "picks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    round = Column(Integer, nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    result = Column(String, nullable=False, default=PickResult.PENDING)
    auto_assigned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("game_id", "user_id", "round", name="uq_picks_game_user_round"),
        UniqueConstraint("game_id", "user_id", "team_id", name="uq_picks_game_user_team"),
        Index("ix_picks_game_round", "game_id", "round"),
    )


# =================================
#  Payments & Payouts
# =================================
class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False, index=True)
    payment_type = Column(String, nullable=False, default=PaymentType.ENTRY)  # entry/rebuy
    rebuy_round = Column(Integer, nullable=False, default=0)  # 0 for entry payments
    status = Column(String, nullable=False, default=PaymentStatus.PENDING)
    currency = Column(String, nullable=False, default="eur")
    entry_fee_minor = Column(BigInteger, nullable=False, default=0)
    processing_fee_minor = Column(BigInteger, nullable=False, default=0)
    total_amount_minor = Column(BigInteger, nullable=False, default=0)
    stripe_checkout_session_id = Column(String, nullable=True, index=True)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)
    stripe_refund_id = Column(String, nullable=True)
    refund_reason = Column(String, nullable=True)
    refund_failure_reason = Column(String, nullable=True)
    refund_requested_at = Column(DateTime, nullable=True)
    refunded_amount_minor = Column(BigInteger, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("game_id", "user_id", "payment_type", "rebuy_round", name="uq_payments_game_user_type_round"),
    )


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id"), nullable=False)
    amount_minor = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, nullable=False, default="eur")
    status = Column(String, nullable=False, default=PayoutStatus.PROCESSING)  # processing/completed/failed
    stripe_transfer_id = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("game_id", "user_id", name="uq_payouts_game_user"),
    )


class StripeWebhookEvent(Base):
    __tablename__ = "stripe_webhook_events"

    event_id = Column(String, primary_key=True)
    type = Column(String, nullable=False)
    livemode = Column(Boolean, nullable=False, default=False)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="received")  # received/processed/failed
    last_error = Column(String, nullable=True)


# =================================
#  Notifications
# =================================
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.account_id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String, nullable=False, index=True)
    data = Column(JSONType, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    dedupe_key = Column(String, nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
