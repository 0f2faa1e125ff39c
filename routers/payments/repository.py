"""Payments domain repository layer."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session


# ---- games & players ----


def get_game(db: Session, *, game_id: str):
    from models import Game

    return db.query(Game).filter(Game.id == game_id).first()


def get_player(db: Session, *, game_id: str, user_id: int):
    from models import GamePlayer

    return (
        db.query(GamePlayer)
        .filter(GamePlayer.game_id == game_id, GamePlayer.user_id == user_id)
        .first()
    )


def count_active_players(db: Session, *, game_id: str) -> int:
    from sqlalchemy import func

    from models import GamePlayer, PlayerStatus

    return (
        db.query(func.count(GamePlayer.id))
        .filter(GamePlayer.game_id == game_id, GamePlayer.status != PlayerStatus.KICKED)
        .scalar()
        or 0
    )


def list_winner_user_ids(db: Session, *, game_id: str) -> List[int]:
    from models import GamePlayer, PlayerStatus

    rows = (
        db.query(GamePlayer.user_id)
        .filter(GamePlayer.game_id == game_id, GamePlayer.status == PlayerStatus.ALIVE)
        .distinct()
        .order_by(GamePlayer.user_id)
        .all()
    )
    return [row[0] for row in rows]


def cancel_game(db: Session, *, game_id: str) -> int:
    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(Game.id == game_id, Game.status.in_([GameStatus.PENDING, GameStatus.ACTIVE]))
        .update({Game.status: GameStatus.CANCELLED, Game.rebuy_deadline: None}, synchronize_session=False)
    )


def kick_players(db: Session, *, game_id: str, reason: str, user_id: Optional[int] = None) -> int:
    from models import GamePlayer, PlayerStatus

    query = db.query(GamePlayer).filter(
        GamePlayer.game_id == game_id,
        GamePlayer.status != PlayerStatus.KICKED,
    )
    if user_id is not None:
        query = query.filter(GamePlayer.user_id == user_id)
    return query.update(
        {GamePlayer.status: PlayerStatus.KICKED, GamePlayer.kick_reason: reason},
        synchronize_session=False,
    )


def kick_players_by_payment_intent(db: Session, *, payment_intent_id: str, reason: str) -> int:
    from models import GamePlayer, PlayerStatus

    return (
        db.query(GamePlayer)
        .filter(
            GamePlayer.stripe_payment_id == payment_intent_id,
            GamePlayer.status != PlayerStatus.KICKED,
        )
        .update(
            {GamePlayer.status: PlayerStatus.KICKED, GamePlayer.kick_reason: reason},
            synchronize_session=False,
        )
    )


def add_or_attach_player(db: Session, *, game_id: str, user_id: int, payment_intent_id: Optional[str]):
    from models import GamePlayer, PlayerStatus

    player = get_player(db, game_id=game_id, user_id=user_id)
    if player is None:
        player = GamePlayer(
            game_id=game_id,
            user_id=user_id,
            status=PlayerStatus.ALIVE,
            stripe_payment_id=payment_intent_id,
        )
        db.add(player)
    elif player.status != PlayerStatus.KICKED and payment_intent_id:
        player.stripe_payment_id = payment_intent_id
    return player


def update_prize_pool(db: Session, *, game_id: str, prize_pool_minor: int) -> int:
    from models import Game

    return (
        db.query(Game)
        .filter(Game.id == game_id)
        .update({Game.prize_pool_minor: prize_pool_minor}, synchronize_session=False)
    )


# ---- payments ----


def get_payment(db: Session, *, payment_id: int):
    from models import Payment

    return db.query(Payment).filter(Payment.id == payment_id).first()


def get_payment_for_slot(
    db: Session, *, game_id: str, user_id: int, payment_type: str, rebuy_round: int
):
    from models import Payment

    return (
        db.query(Payment)
        .filter(
            Payment.game_id == game_id,
            Payment.user_id == user_id,
            Payment.payment_type == payment_type,
            Payment.rebuy_round == rebuy_round,
        )
        .first()
    )


def get_payment_by_session_id(db: Session, *, session_id: str):
    from models import Payment

    return db.query(Payment).filter(Payment.stripe_checkout_session_id == session_id).first()


def get_payment_by_intent_id(db: Session, *, payment_intent_id: str):
    from models import Payment

    return db.query(Payment).filter(Payment.stripe_payment_intent_id == payment_intent_id).first()


def upsert_pending_payment(
    db: Session,
    *,
    game_id: str,
    user_id: int,
    payment_type: str,
    rebuy_round: int,
    currency: str,
    entry_fee_minor: int,
    processing_fee_minor: int,
):
    """Insert or reset the payment row for (game, user, type, rebuy round)."""
    from models import Payment, PaymentStatus

    payment = get_payment_for_slot(
        db, game_id=game_id, user_id=user_id, payment_type=payment_type, rebuy_round=rebuy_round
    )
    if payment is None:
        payment = Payment(game_id=game_id, user_id=user_id, payment_type=payment_type, rebuy_round=rebuy_round)
        db.add(payment)

    payment.status = PaymentStatus.PENDING
    payment.currency = currency
    payment.entry_fee_minor = entry_fee_minor
    payment.processing_fee_minor = processing_fee_minor
    payment.total_amount_minor = entry_fee_minor + processing_fee_minor
    payment.stripe_checkout_session_id = None
    payment.stripe_payment_intent_id = None
    payment.updated_at = datetime.utcnow()
    db.flush()
    return payment


def list_refundable_payments(
    db: Session,
    *,
    game_id: str,
    user_id: Optional[int] = None,
    payment_type: Optional[str] = None,
    rebuy_round: Optional[int] = None,
):
    from models import Payment, PaymentStatus

    query = db.query(Payment).filter(
        Payment.game_id == game_id,
        Payment.status.in_(PaymentStatus.REFUNDABLE),
    )
    if user_id is not None:
        query = query.filter(Payment.user_id == user_id)
    if payment_type is not None:
        query = query.filter(Payment.payment_type == payment_type)
    if rebuy_round is not None:
        query = query.filter(Payment.rebuy_round == rebuy_round)
    return query.order_by(Payment.id).all()


def list_refundable_rebuyer_user_ids(db: Session, *, game_id: str, rebuy_round: Optional[int]) -> List[int]:
    from models import Payment, PaymentStatus, PaymentType

    query = db.query(Payment.user_id).filter(
        Payment.game_id == game_id,
        Payment.payment_type == PaymentType.REBUY,
        Payment.status.in_(PaymentStatus.REFUNDABLE),
    )
    if rebuy_round is not None:
        query = query.filter(Payment.rebuy_round == rebuy_round)
    else:
        query = query.filter(Payment.rebuy_round > 0)
    return [row[0] for row in query.distinct().order_by(Payment.user_id).all()]


def transition_payment(
    db: Session,
    *,
    payment_id: int,
    from_statuses,
    values: dict,
) -> int:
    """Move a payment to a new state only from one of ``from_statuses``."""
    from models import Payment

    values = dict(values)
    values["updated_at"] = datetime.utcnow()
    return (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.status.in_(list(from_statuses)))
        .update(
            {getattr(Payment, key): value for key, value in values.items()},
            synchronize_session=False,
        )
    )


def sum_succeeded_entry_fees(db: Session, *, game_id: str) -> int:
    from sqlalchemy import func

    from models import Payment, PaymentStatus

    return int(
        db.query(func.coalesce(func.sum(Payment.entry_fee_minor), 0))
        .filter(Payment.game_id == game_id, Payment.status == PaymentStatus.SUCCEEDED)
        .scalar()
        or 0
    )


# ---- payouts ----


def get_payout(db: Session, *, game_id: str, user_id: int):
    from models import Payout

    return (
        db.query(Payout)
        .filter(Payout.game_id == game_id, Payout.user_id == user_id)
        .first()
    )


def upsert_payout(
    db: Session,
    *,
    game_id: str,
    user_id: int,
    amount_minor: int,
    currency: str,
    status: str,
    stripe_transfer_id: Optional[str] = None,
    failure_reason: Optional[str] = None,
):
    from models import Payout

    payout = get_payout(db, game_id=game_id, user_id=user_id)
    if payout is None:
        payout = Payout(game_id=game_id, user_id=user_id)
        db.add(payout)
    payout.amount_minor = amount_minor
    payout.currency = currency
    payout.status = status
    payout.stripe_transfer_id = stripe_transfer_id
    payout.failure_reason = failure_reason
    payout.updated_at = datetime.utcnow()
    db.flush()
    return payout


# ---- webhook events ----


def get_webhook_event(db: Session, *, event_id: str):
    from models import StripeWebhookEvent

    return db.query(StripeWebhookEvent).filter(StripeWebhookEvent.event_id == event_id).first()


def record_webhook_event(
    db: Session,
    *,
    event_id: str,
    event_type: str,
    livemode: bool,
    status: str,
    last_error: Optional[str] = None,
):
    from models import StripeWebhookEvent

    event = get_webhook_event(db, event_id=event_id)
    if event is None:
        event = StripeWebhookEvent(event_id=event_id, type=event_type, livemode=bool(livemode))
        db.add(event)
    event.status = status
    event.last_error = last_error
    if status == "processed":
        event.processed_at = datetime.utcnow()
    return event
