"""Payments domain service layer.

Refunds, payouts, checkout sessions and Stripe webhook handling. Batch operations
commit per item: one failed refund or transfer is recorded on its own row and never
rolls back or blocks its siblings.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status

import config
from core import notifications as core_notifications
from core.ports.payments import PaymentProcessorPort
from core.users import get_connect_account_ids, set_connect_account_id
from models import (
    GameStatus,
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    PlayerStatus,
    RefundScenario,
    WipeoutMode,
)
from routers.dependencies import CALLER_ADMIN, CALLER_SERVICE
from utils.logging_helpers import log_error, log_info, log_warning
from utils.stripe_client import CheckoutFailed, ConnectAccountFailed

from . import repository as payments_repository
from .schemas import (
    CheckoutResponse,
    ConnectAccountResponse,
    PayoutResponse,
    RefundFailure,
    RefundResponse,
    WebhookResponse,
)
from .splits import format_amount, processing_fee_minor, split_amounts

logger = logging.getLogger(__name__)

AUTHORIZED_SERVICE = "service"
AUTHORIZED_ADMIN = "admin"
AUTHORIZED_MANAGER = "manager"

DEFAULT_CANCEL_REASON = "Game cancelled before kickoff."
DEFAULT_KICK_REASON = "Removed by manager."
STRIPE_REFUND_KICK_REASON = "Payment refunded via Stripe."
MISSING_INTENT_REASON = "Payment intent id is missing."

# Payment states a new checkout may reset
RESTARTABLE_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED)
ACTIVE_REBUY_STATUSES = (PaymentStatus.PENDING, PaymentStatus.REFUND_PENDING, PaymentStatus.SUCCEEDED)

REFUND_NOTIFICATIONS = {
    RefundScenario.GAME_CANCELLED: (
        "game_refund_pending",
        "Game cancelled refund started",
        "This game was cancelled before kickoff. Your payment refund is now processing.",
    ),
    RefundScenario.SINGLE_REBUYER: (
        "rebuy_refund_pending",
        "Rebuy refund started",
        "Only one rebuyer remained. Your rebuy refund is now processing.",
    ),
    RefundScenario.KICK_PLAYER: (
        "kick_refund_pending",
        "Kick refund started",
        "You were removed from the game. {reason}Your refund is now processing.",
    ),
}


def _now() -> datetime:
    return datetime.utcnow()


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _load_game(db, game_id: Optional[str]):
    if not game_id:
        raise _bad_request("game_id is required")
    game = payments_repository.get_game(db, game_id=game_id)
    if not game:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return game


def _alert_manager(db, game, *, type: str, title: str, body: str, data: dict):
    core_notifications.notify_user(
        db,
        user_id=game.manager_id,
        type=type,
        title=title,
        body=body,
        data={"game_id": game.id, **data},
    )
    db.commit()


# ---- refunds ----


def _parse_scenario(value: Optional[str]) -> RefundScenario:
    try:
        return RefundScenario(value)
    except ValueError:
        raise _bad_request(
            "scenario must be one of: " + ", ".join(scenario.value for scenario in RefundScenario)
        )


def _authorize_refund(caller, game) -> str:
    if caller.kind == CALLER_SERVICE:
        return AUTHORIZED_SERVICE
    if caller.kind == CALLER_ADMIN:
        return AUTHORIZED_ADMIN
    if caller.account_id is not None and caller.account_id == game.manager_id:
        return AUTHORIZED_MANAGER
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not authorized to process refunds for this game",
    )


def _resolve_single_rebuyer(db, game, *, user_id: Optional[int], rebuy_round: Optional[int]) -> int:
    if user_id is not None:
        return user_id
    rebuyers = payments_repository.list_refundable_rebuyer_user_ids(db, game_id=game.id, rebuy_round=rebuy_round)
    if len(rebuyers) != 1:
        raise _bad_request(
            f"Single rebuyer refund requires exactly one rebuyer; found {len(rebuyers)}."
        )
    return rebuyers[0]


def _apply_scenario_side_effects(db, game, scenario: RefundScenario, *, user_id: Optional[int], reason: Optional[str]):
    if scenario == RefundScenario.GAME_CANCELLED:
        payments_repository.cancel_game(db, game_id=game.id)
        kicked = payments_repository.kick_players(db, game_id=game.id, reason=reason or DEFAULT_CANCEL_REASON)
        log_info(logger, "Game cancelled for refund", game_id=game.id, kicked=kicked)
    elif scenario == RefundScenario.KICK_PLAYER:
        kicked = payments_repository.kick_players(
            db, game_id=game.id, user_id=user_id, reason=reason or DEFAULT_KICK_REASON
        )
        log_info(logger, "Player kicked for refund", game_id=game.id, user_id=user_id, kicked=kicked)
    db.commit()


def _refund_notification(scenario: RefundScenario, reason: Optional[str]):
    type, title, body = REFUND_NOTIFICATIONS[scenario]
    return type, title, body.format(reason=f"Reason: {reason}. " if reason else "")


def process_refund(db, *, caller, request, processor: PaymentProcessorPort) -> RefundResponse:
    game = _load_game(db, request.game_id)
    scenario = _parse_scenario(request.scenario)
    rebuy_round = request.rebuy_round if request.rebuy_round and request.rebuy_round > 0 else None
    reason = request.reason.strip() if request.reason and request.reason.strip() else None

    authorized_as = _authorize_refund(caller, game)

    target_user_id = request.user_id
    if scenario == RefundScenario.KICK_PLAYER and target_user_id is None:
        raise _bad_request("user_id is required for kick_player refunds")
    if scenario == RefundScenario.SINGLE_REBUYER:
        target_user_id = _resolve_single_rebuyer(db, game, user_id=target_user_id, rebuy_round=rebuy_round)

    _apply_scenario_side_effects(db, game, scenario, user_id=target_user_id, reason=reason)

    payments = payments_repository.list_refundable_payments(
        db,
        game_id=game.id,
        user_id=target_user_id,
        payment_type=PaymentType.REBUY if scenario == RefundScenario.SINGLE_REBUYER else None,
        rebuy_round=rebuy_round if scenario == RefundScenario.SINGLE_REBUYER else None,
    )
    response = RefundResponse(
        game_id=game.id,
        scenario=scenario.value,
        authorized_as=authorized_as,
        target_user_id=target_user_id,
        rebuy_round=rebuy_round,
    )
    if not payments:
        response.message = "No refundable payments found for the requested scenario."
        return response

    notification_type, title, body = _refund_notification(scenario, reason)
    stripe_reason = "duplicate" if scenario == RefundScenario.SINGLE_REBUYER else "requested_by_customer"
    refund_reason = reason or scenario.value

    for payment in payments:
        if not payment.stripe_payment_intent_id:
            response.skipped += 1
            response.failures.append(RefundFailure(payment_id=payment.id, reason=MISSING_INTENT_REASON))
            log_warning(logger, "Refund skipped, no payment intent", game_id=game.id, payment_id=payment.id)
            continue

        try:
            refund = processor.create_refund(
                payment_intent_id=payment.stripe_payment_intent_id,
                reason=stripe_reason,
                metadata={
                    "game_id": payment.game_id,
                    "payment_id": str(payment.id),
                    "payment_type": payment.payment_type,
                    "rebuy_round": str(payment.rebuy_round),
                    "scenario": scenario.value,
                    "user_id": str(payment.user_id),
                    "reason": reason or "",
                },
                idempotency_key=f"refund:{scenario.value}:{payment.id}",
            )
        except Exception as exc:
            payments_repository.transition_payment(
                db,
                payment_id=payment.id,
                from_statuses=PaymentStatus.REFUNDABLE,
                values={
                    "status": PaymentStatus.REFUND_FAILED,
                    "refund_failure_reason": str(exc),
                    "refund_reason": refund_reason,
                    "refund_requested_at": _now(),
                },
            )
            db.commit()
            response.failed += 1
            response.failures.append(RefundFailure(payment_id=payment.id, reason=str(exc)))
            log_error(logger, "Refund failed", game_id=game.id, payment_id=payment.id, user_id=payment.user_id, error=str(exc))
            continue

        payments_repository.transition_payment(
            db,
            payment_id=payment.id,
            from_statuses=PaymentStatus.REFUNDABLE,
            values={
                "status": PaymentStatus.REFUND_PENDING,
                "stripe_refund_id": refund.get("refund_id"),
                "refund_failure_reason": None,
                "refund_reason": refund_reason,
                "refund_requested_at": _now(),
            },
        )
        core_notifications.notify_user(
            db,
            user_id=payment.user_id,
            type=notification_type,
            title=title,
            body=body,
            data={
                "game_id": payment.game_id,
                "payment_id": payment.id,
                "payment_type": payment.payment_type,
                "rebuy_round": payment.rebuy_round,
                "scenario": scenario.value,
                "refund_reason": refund_reason,
                "stripe_refund_id": refund.get("refund_id"),
            },
            email=True,
        )
        db.commit()
        response.processed += 1

    log_info(
        logger,
        "Refund batch finished",
        game_id=game.id,
        scenario=scenario.value,
        processed=response.processed,
        failed=response.failed,
        skipped=response.skipped,
    )
    if response.failed or response.skipped:
        _alert_manager(
            db,
            game,
            type="refund_batch_failures",
            title="Some refunds need attention",
            body=(
                f"{response.failed} refund(s) failed and {response.skipped} were skipped "
                f"for {game.name}."
            ),
            data={
                "scenario": scenario.value,
                "failures": [{"payment_id": failure.payment_id, "reason": failure.reason} for failure in response.failures],
            },
        )
    return response


# ---- payouts ----


def process_payouts(db, *, game_id: Optional[str], processor: PaymentProcessorPort) -> PayoutResponse:
    game = _load_game(db, game_id)
    if game.status != GameStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Game is not completed yet.", "status": game.status},
        )

    prize_pool = payments_repository.sum_succeeded_entry_fees(db, game_id=game.id)
    if game.prize_pool_minor != prize_pool:
        payments_repository.update_prize_pool(db, game_id=game.id, prize_pool_minor=prize_pool)
        db.commit()

    response = PayoutResponse(game_id=game.id, prize_pool_minor=prize_pool)
    if prize_pool <= 0:
        response.message = "No prize pool to distribute."
        return response

    winners = payments_repository.list_winner_user_ids(db, game_id=game.id)
    response.winners = len(winners)
    if not winners:
        response.message = "No winners found for payout."
        return response

    connect_ids = get_connect_account_ids(db, account_ids=winners)
    currency = (game.currency or "eur").lower()

    for user_id, amount in zip(winners, split_amounts(prize_pool, len(winners))):
        existing = payments_repository.get_payout(db, game_id=game.id, user_id=user_id)
        if existing and existing.status == PayoutStatus.COMPLETED:
            response.already_paid += 1
            continue

        destination = connect_ids.get(user_id)
        if not destination or amount <= 0:
            payments_repository.upsert_payout(
                db,
                game_id=game.id,
                user_id=user_id,
                amount_minor=amount,
                currency=currency,
                status=PayoutStatus.FAILED,
                failure_reason="no_connect_account" if not destination else "zero_amount",
            )
            db.commit()
            response.winners_without_connect.append(user_id)
            response.failed += 1
            log_warning(logger, "Payout not attempted", game_id=game.id, user_id=user_id, amount=amount, has_destination=bool(destination))
            continue

        payments_repository.upsert_payout(
            db,
            game_id=game.id,
            user_id=user_id,
            amount_minor=amount,
            currency=currency,
            status=PayoutStatus.PROCESSING,
        )
        db.commit()

        try:
            transfer = processor.create_transfer(
                amount_minor=amount,
                currency=currency,
                destination=destination,
                metadata={"game_id": game.id, "user_id": str(user_id)},
                idempotency_key=f"payout:{game.id}:{user_id}:{amount}",
            )
        except Exception as exc:
            payments_repository.upsert_payout(
                db,
                game_id=game.id,
                user_id=user_id,
                amount_minor=amount,
                currency=currency,
                status=PayoutStatus.FAILED,
                failure_reason=str(exc),
            )
            db.commit()
            response.failed += 1
            log_error(logger, "Payout transfer failed", game_id=game.id, user_id=user_id, amount=amount, error=str(exc))
            continue

        payments_repository.upsert_payout(
            db,
            game_id=game.id,
            user_id=user_id,
            amount_minor=amount,
            currency=currency,
            status=PayoutStatus.COMPLETED,
            stripe_transfer_id=transfer.get("transfer_id"),
        )
        core_notifications.notify_user(
            db,
            user_id=user_id,
            type="payout_processed",
            title="Payout processed",
            body=f"Your payout of {format_amount(amount, currency)} has been initiated.",
            data={
                "game_id": game.id,
                "amount_minor": amount,
                "currency": currency,
                "stripe_transfer_id": transfer.get("transfer_id"),
            },
            email=True,
        )
        db.commit()
        response.completed += 1

    log_info(
        logger,
        "Payout batch finished",
        game_id=game.id,
        prize_pool=prize_pool,
        winners=response.winners,
        completed=response.completed,
        failed=response.failed,
        already_paid=response.already_paid,
    )
    if response.failed:
        _alert_manager(
            db,
            game,
            type="payout_batch_failures",
            title="Some payouts need attention",
            body=f"{response.failed} of {response.winners} payout(s) for {game.name} did not go through.",
            data={"winners_without_connect": response.winners_without_connect},
        )
    return response


# ---- checkout ----


def _checkout_idempotency_key(payment) -> str:
    return f"checkout:{payment.id}:{payment.updated_at.strftime('%Y%m%d%H%M%S%f')}"


def _start_checkout(db, game, *, current_user, payment_type: str, rebuy_round: int, processor) -> CheckoutResponse:
    fee = processing_fee_minor(
        game.entry_fee_minor,
        percent_bps=config.STRIPE_PROCESSING_FEE_PERCENT_BPS,
        fixed_minor=config.STRIPE_PROCESSING_FEE_FIXED_MINOR,
    )
    currency = (game.currency or "eur").lower()
    payment = payments_repository.upsert_pending_payment(
        db,
        game_id=game.id,
        user_id=current_user.account_id,
        payment_type=payment_type,
        rebuy_round=rebuy_round,
        currency=currency,
        entry_fee_minor=game.entry_fee_minor,
        processing_fee_minor=fee,
    )
    db.commit()
    db.refresh(payment)

    query_key = "rebuy" if payment_type == PaymentType.REBUY else "checkout"
    game_link = f"{config.APP_BASE_URL.rstrip('/')}/games/{game.id}"
    product_name = f"Rebuy - {game.name}" if payment_type == PaymentType.REBUY else f"Entry fee - {game.name}"
    try:
        session = processor.create_checkout_session(
            amount_minor=payment.total_amount_minor,
            currency=currency,
            product_name=f"{product_name} (incl. {format_amount(fee, currency)} processing fee)",
            customer_email=current_user.email,
            success_url=f"{game_link}?{query_key}=success",
            cancel_url=f"{game_link}?{query_key}=cancelled",
            metadata={
                "game_id": game.id,
                "user_id": str(current_user.account_id),
                "payment_id": str(payment.id),
                "payment_type": payment_type,
                "rebuy_round": str(rebuy_round),
            },
            idempotency_key=_checkout_idempotency_key(payment),
        )
    except CheckoutFailed as exc:
        log_error(logger, "Checkout session failed", game_id=game.id, user_id=current_user.account_id, payment_id=payment.id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start checkout. Please try again.",
        )

    payment.stripe_checkout_session_id = session["session_id"]
    db.commit()

    log_info(
        logger,
        "Checkout session created",
        game_id=game.id,
        user_id=current_user.account_id,
        payment_id=payment.id,
        payment_type=payment_type,
        rebuy_round=rebuy_round,
    )
    return CheckoutResponse(
        game_id=game.id,
        payment_id=payment.id,
        payment_type=payment_type,
        rebuy_round=rebuy_round,
        session_id=session["session_id"],
        checkout_url=session.get("url"),
        currency=currency,
        entry_fee_minor=payment.entry_fee_minor,
        processing_fee_minor=payment.processing_fee_minor,
        total_minor=payment.total_amount_minor,
    )


def create_checkout(db, *, current_user, game_id: Optional[str], processor: PaymentProcessorPort) -> CheckoutResponse:
    game = _load_game(db, game_id)
    if game.status != GameStatus.PENDING:
        raise _bad_request("This game has already started")
    if not game.entry_fee_minor or game.entry_fee_minor <= 0:
        raise _bad_request("This game is free and does not require checkout")

    player = payments_repository.get_player(db, game_id=game.id, user_id=current_user.account_id)
    if player and player.status == PlayerStatus.KICKED:
        raise _bad_request("You were removed from this game")
    if player:
        raise _bad_request("You are already part of this game")

    if game.max_players is not None:
        if payments_repository.count_active_players(db, game_id=game.id) >= game.max_players:
            raise _bad_request("This game is full")

    existing = payments_repository.get_payment_for_slot(
        db,
        game_id=game.id,
        user_id=current_user.account_id,
        payment_type=PaymentType.ENTRY,
        rebuy_round=0,
    )
    if existing and existing.status not in RESTARTABLE_PAYMENT_STATUSES:
        raise _bad_request("A payment for this game already exists")

    return _start_checkout(
        db,
        game,
        current_user=current_user,
        payment_type=PaymentType.ENTRY,
        rebuy_round=0,
        processor=processor,
    )


def create_rebuy_checkout(db, *, current_user, game_id: Optional[str], processor: PaymentProcessorPort) -> CheckoutResponse:
    game = _load_game(db, game_id)
    if game.status != GameStatus.ACTIVE:
        raise _bad_request("This game is not active")
    if game.wipeout_mode != WipeoutMode.REBUY:
        raise _bad_request("This game does not support rebuys")
    if not game.entry_fee_minor or game.entry_fee_minor <= 0:
        raise _bad_request("This game is free and does not require checkout")
    if not game.current_round:
        raise _bad_request("Unable to determine current rebuy round")
    if game.rebuy_deadline is None or game.rebuy_deadline <= _now():
        raise _bad_request("The rebuy window is closed")

    player = payments_repository.get_player(db, game_id=game.id, user_id=current_user.account_id)
    if not player:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not part of this game")
    if player.status == PlayerStatus.ALIVE:
        raise _bad_request("You are still alive in this game")
    if player.status == PlayerStatus.KICKED:
        raise _bad_request("Kicked players cannot rebuy")

    rebuy_round = game.current_round
    existing = payments_repository.get_payment_for_slot(
        db,
        game_id=game.id,
        user_id=current_user.account_id,
        payment_type=PaymentType.REBUY,
        rebuy_round=rebuy_round,
    )
    if existing and existing.status in ACTIVE_REBUY_STATUSES:
        raise _bad_request("A rebuy payment already exists for this round")

    return _start_checkout(
        db,
        game,
        current_user=current_user,
        payment_type=PaymentType.REBUY,
        rebuy_round=rebuy_round,
        processor=processor,
    )


# ---- connect onboarding ----


def create_connect_account(db, *, current_user, origin: Optional[str], processor: PaymentProcessorPort) -> ConnectAccountResponse:
    """Ensure the caller has a Connect account for payouts and return an onboarding link."""
    base_url = (origin or config.APP_BASE_URL).rstrip("/")
    account_id = current_user.stripe_connect_account_id
    created = False

    try:
        if not account_id:
            account = processor.create_connect_account(
                email=current_user.email,
                country=config.STRIPE_CONNECT_COUNTRY,
                metadata={"user_id": str(current_user.account_id)},
                idempotency_key=f"connect:{current_user.account_id}",
            )
            linked = set_connect_account_id(
                db, account_id=current_user.account_id, connect_account_id=account["account_id"]
            )
            db.commit()
            db.refresh(current_user)
            account_id = current_user.stripe_connect_account_id
            created = bool(linked)

        link = processor.create_account_link(
            account_id=account_id,
            refresh_url=f"{base_url}/profile?connect=refresh",
            return_url=f"{base_url}/profile?connect=complete",
        )
    except ConnectAccountFailed as exc:
        log_error(logger, "Connect onboarding failed", user_id=current_user.account_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not start payout onboarding. Please try again.",
        )

    log_info(logger, "Connect onboarding link created", user_id=current_user.account_id, account_id=account_id, created=created)
    return ConnectAccountResponse(account_id=account_id, onboarding_url=link["url"], created=created)


# ---- stripe webhook ----


def _object_id(value) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _handle_checkout_completed(db, session: dict, event_id: str) -> WebhookResponse:
    metadata = session.get("metadata") or {}
    payment = None
    payment_id = _int_or_none(metadata.get("payment_id"))
    if payment_id is not None:
        payment = payments_repository.get_payment(db, payment_id=payment_id)
    if payment is None and session.get("id"):
        payment = payments_repository.get_payment_by_session_id(db, session_id=session["id"])
    if payment is None:
        return WebhookResponse(ignored=True, reason="payment_not_found")

    payment_intent_id = _object_id(session.get("payment_intent"))
    updated = payments_repository.transition_payment(
        db,
        payment_id=payment.id,
        from_statuses=(PaymentStatus.PENDING,),
        values={
            "status": PaymentStatus.SUCCEEDED,
            "stripe_checkout_session_id": session.get("id"),
            "stripe_payment_intent_id": payment_intent_id,
        },
    )
    if not updated:
        return WebhookResponse(ignored=True, reason="payment_not_pending")

    players_updated = 0
    if payment.payment_type == PaymentType.ENTRY:
        payments_repository.add_or_attach_player(
            db,
            game_id=payment.game_id,
            user_id=payment.user_id,
            payment_intent_id=payment_intent_id,
        )
        players_updated = 1
        body = "Payment successful. Your spot in the game is confirmed."
    else:
        body = "Rebuy payment successful. You will rejoin when the rebuy window closes."

    core_notifications.notify_user(
        db,
        user_id=payment.user_id,
        type="payment_confirmed",
        title="Payment confirmed",
        body=body,
        data={
            "event_id": event_id,
            "game_id": payment.game_id,
            "payment_type": payment.payment_type,
            "stripe_payment_intent_id": payment_intent_id,
        },
    )
    return WebhookResponse(payments_updated=updated, players_updated=players_updated)


def _handle_checkout_expired(db, session: dict, event_id: str) -> WebhookResponse:
    if not session.get("id"):
        return WebhookResponse(ignored=True, reason="missing_session_id")
    payment = payments_repository.get_payment_by_session_id(db, session_id=session.get("id"))
    if payment is None:
        return WebhookResponse(ignored=True, reason="payment_not_found")
    updated = payments_repository.transition_payment(
        db,
        payment_id=payment.id,
        from_statuses=(PaymentStatus.PENDING,),
        values={"status": PaymentStatus.CANCELLED},
    )
    return WebhookResponse(payments_updated=updated)


def _handle_payment_failed(db, intent: dict, event_id: str) -> WebhookResponse:
    metadata = intent.get("metadata") or {}
    payment = None
    payment_id = _int_or_none(metadata.get("payment_id"))
    if payment_id is not None:
        payment = payments_repository.get_payment(db, payment_id=payment_id)
    if payment is None and intent.get("id"):
        payment = payments_repository.get_payment_by_intent_id(db, payment_intent_id=intent["id"])
    if payment is None:
        return WebhookResponse(ignored=True, reason="payment_not_found")

    updated = payments_repository.transition_payment(
        db,
        payment_id=payment.id,
        from_statuses=(PaymentStatus.PENDING,),
        values={"status": PaymentStatus.FAILED, "stripe_payment_intent_id": intent.get("id")},
    )
    if updated:
        core_notifications.notify_user(
            db,
            user_id=payment.user_id,
            type="payment_failed",
            title="Payment failed",
            body="Payment failed. Please retry checkout to join the game.",
            data={"event_id": event_id, "game_id": payment.game_id, "stripe_payment_intent_id": intent.get("id")},
            email=True,
        )
    return WebhookResponse(payments_updated=updated)


def _latest_refund_id(charge: dict) -> Optional[str]:
    refunds = (charge.get("refunds") or {}).get("data") or []
    if not refunds:
        return None
    return max(refunds, key=lambda refund: refund.get("created") or 0).get("id")


def _handle_charge_refunded(db, charge: dict, event_id: str) -> WebhookResponse:
    payment_intent_id = _object_id(charge.get("payment_intent"))
    if not payment_intent_id:
        return WebhookResponse(ignored=True, reason="missing_payment_intent")

    payment = payments_repository.get_payment_by_intent_id(db, payment_intent_id=payment_intent_id)
    if payment is None:
        return WebhookResponse(ignored=True, reason="payment_not_found")

    updated = payments_repository.transition_payment(
        db,
        payment_id=payment.id,
        from_statuses=(PaymentStatus.REFUND_PENDING, PaymentStatus.REFUND_FAILED, PaymentStatus.SUCCEEDED),
        values={
            "status": PaymentStatus.REFUNDED,
            "refunded_amount_minor": charge.get("amount_refunded"),
            "refunded_at": _now(),
            "refund_failure_reason": None,
            "stripe_refund_id": _latest_refund_id(charge) or payment.stripe_refund_id,
        },
    )
    kicked = payments_repository.kick_players_by_payment_intent(
        db, payment_intent_id=payment_intent_id, reason=STRIPE_REFUND_KICK_REASON
    )
    if updated:
        core_notifications.notify_user(
            db,
            user_id=payment.user_id,
            type="payment_refunded",
            title="Payment refunded",
            body=f"Your payment of {format_amount(charge.get('amount_refunded') or 0, payment.currency)} was refunded.",
            data={"event_id": event_id, "game_id": payment.game_id, "stripe_payment_intent_id": payment_intent_id},
        )
    return WebhookResponse(payments_updated=updated, players_updated=kicked)


def _handle_refund_failed(db, refund: dict, event_id: str) -> WebhookResponse:
    payment_intent_id = _object_id(refund.get("payment_intent"))
    if not payment_intent_id:
        return WebhookResponse(ignored=True, reason="missing_payment_intent")

    payment = payments_repository.get_payment_by_intent_id(db, payment_intent_id=payment_intent_id)
    if payment is None:
        return WebhookResponse(ignored=True, reason="payment_not_found")

    failure_reason = refund.get("failure_reason") or "unknown_refund_failure"
    updated = payments_repository.transition_payment(
        db,
        payment_id=payment.id,
        from_statuses=(PaymentStatus.REFUND_PENDING,),
        values={
            "status": PaymentStatus.REFUND_FAILED,
            "refund_failure_reason": failure_reason,
            "stripe_refund_id": refund.get("id"),
        },
    )
    if updated:
        core_notifications.notify_user(
            db,
            user_id=payment.user_id,
            type="refund_failed",
            title="Refund failed",
            body="We could not complete your refund. Please contact support.",
            data={
                "event_id": event_id,
                "game_id": payment.game_id,
                "failure_reason": failure_reason,
                "stripe_refund_id": refund.get("id"),
            },
            email=True,
        )
    return WebhookResponse(payments_updated=updated)


WEBHOOK_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "checkout.session.expired": _handle_checkout_expired,
    "payment_intent.payment_failed": _handle_payment_failed,
    "charge.refunded": _handle_charge_refunded,
    "refund.failed": _handle_refund_failed,
}


def process_stripe_webhook(db, *, event: dict) -> WebhookResponse:
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise _bad_request("Malformed webhook event")

    existing = payments_repository.get_webhook_event(db, event_id=event_id)
    if existing and existing.status == "processed":
        log_info(logger, "Webhook event already processed", event_id=event_id, event_type=event_type)
        return WebhookResponse(event_type=event_type, duplicate=True)

    payments_repository.record_webhook_event(
        db,
        event_id=event_id,
        event_type=event_type,
        livemode=event.get("livemode", False),
        status="received",
    )
    db.commit()

    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        response = WebhookResponse(ignored=True, reason="unhandled_event_type")
    else:
        data_object = (event.get("data") or {}).get("object") or {}
        try:
            response = handler(db, data_object, event_id)
        except Exception as exc:
            db.rollback()
            payments_repository.record_webhook_event(
                db,
                event_id=event_id,
                event_type=event_type,
                livemode=event.get("livemode", False),
                status="failed",
                last_error=str(exc),
            )
            db.commit()
            log_error(logger, "Webhook handler failed", event_id=event_id, event_type=event_type, error=str(exc), exc_info=True)
            raise

    payments_repository.record_webhook_event(
        db,
        event_id=event_id,
        event_type=event_type,
        livemode=event.get("livemode", False),
        status="processed",
    )
    db.commit()

    response.event_type = event_type
    log_info(
        logger,
        "Webhook event processed",
        event_id=event_id,
        event_type=event_type,
        ignored=response.ignored,
        payments_updated=response.payments_updated,
    )
    return response
