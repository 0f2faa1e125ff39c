"""Games domain service layer.

Round advancement, result settlement, pick submission, the cron sweep and round
reminders. Each step commits its own conditional updates; refunds and payouts are
triggered over HTTP through ``core.payments`` and never block the state change that
caused them.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError

import config
from core import notifications as core_notifications
from core import payments as core_payments
from models import (
    FixtureStatus,
    GameStatus,
    PickResult,
    PlayerStatus,
    RefundScenario,
    WipeoutMode,
)
from utils.logging_helpers import log_error, log_info, log_warning

from . import repository as games_repository
from .auto_assign import NO_AVAILABLE_TEAM, plan_auto_assignments, round_teams
from .outcomes import decide_round_transition, eliminates, resolve_round_outcomes
from .schemas import (
    ProcessResultsResponse,
    ProcessRoundResponse,
    RebuyResolution,
    RoundRemindersResponse,
    SubmitPickRequest,
    SubmitPickResponse,
    SweepGameResult,
    SweepResponse,
    TriggerSummary,
)
from .sweep import build_sweep_targets

logger = logging.getLogger(__name__)

PROCESS_ROUND = "process-round"
PROCESS_RESULTS = "process-results"

CANCELLATION_REASON = "Game cancelled because minimum players were not met before kickoff."
SINGLE_REBUYER_REASON = "Single rebuyer remaining in rebuy mode."

REMINDER_TYPE = "round_reminder_24h"


# ---- shared helpers ----


def _now() -> datetime:
    return datetime.utcnow()


def _load_game(db, game_id: Optional[str]):
    if not game_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="game_id is required")
    game = games_repository.get_game(db, game_id=game_id)
    if not game:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Game not found")
    return game


def _resolve_target_round(game, requested_round: Optional[int]) -> int:
    if requested_round is not None:
        if requested_round < 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="round must be a positive integer",
            )
        return requested_round
    if game.current_round:
        return game.current_round
    if game.starting_round:
        return game.starting_round
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Game has no round to process")


def _not_ready(message: str, **extra):
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"message": message, **extra})


def _trigger_summary(result) -> Optional[TriggerSummary]:
    if result is None:
        return None
    return TriggerSummary(**result.as_summary())


def _alert_manager(db, game, *, type: str, title: str, body: str, round_number: int, result=None):
    data = {"game_id": game.id, "round": round_number}
    if result is not None:
        data.update({"status_code": result.status_code, "error": result.error})
    core_notifications.notify_user(
        db,
        user_id=game.manager_id,
        type=type,
        title=title,
        body=body,
        data=data,
    )
    db.commit()


def _trigger_payouts(db, game, *, round_number: int, invoker):
    result = core_payments.trigger_payouts(invoker, game_id=game.id)
    if not result.ok:
        log_error(logger, "Payout trigger failed", game_id=game.id, round=round_number, error=result.describe())
        _alert_manager(
            db,
            game,
            type="payout_trigger_failed",
            title="Payout trigger failed",
            body=f"The game is complete but payouts could not be started: {result.describe()}",
            round_number=round_number,
            result=result,
        )
    return result


def _trigger_refund(db, game, *, round_number: int, invoker, **refund_args):
    result = core_payments.trigger_refund(invoker, game_id=game.id, **refund_args)
    if not result.ok:
        log_error(
            logger,
            "Refund trigger failed",
            game_id=game.id,
            round=round_number,
            scenario=refund_args.get("scenario"),
            error=result.describe(),
        )
        _alert_manager(
            db,
            game,
            type="refund_trigger_failed",
            title="Refund trigger failed",
            body=f"Refunds could not be started: {result.describe()}",
            round_number=round_number,
            result=result,
        )
    return result


def _notify_winners(db, game, winners: List[int], round_number: int):
    core_notifications.notify_users(
        db,
        user_ids=winners,
        type="game_won",
        title="You won!",
        body=f"You survived to the end of {game.name}. Your share of the prize pool is on its way.",
        data={"game_id": game.id, "round": round_number},
        email=True,
    )


# ---- round advancement ----


def advance_round(db, *, game_id: Optional[str], requested_round: Optional[int], invoker) -> ProcessRoundResponse:
    game = _load_game(db, game_id)

    if game.status in GameStatus.TERMINAL:
        return ProcessRoundResponse(
            game_id=game.id,
            round=game.current_round,
            status=game.status,
            message=f"Game is {game.status}; nothing to do.",
        )

    target_round = _resolve_target_round(game, requested_round)
    now = _now()

    rebuy_resolution = None
    if (
        game.status == GameStatus.ACTIVE
        and game.wipeout_mode == WipeoutMode.REBUY
        and game.rebuy_deadline is not None
    ):
        if game.rebuy_deadline > now:
            return ProcessRoundResponse(
                game_id=game.id,
                round=target_round,
                status=game.status,
                message=f"Rebuy window is still open until {game.rebuy_deadline.isoformat()}.",
            )
        resolved = _resolve_rebuy_window(db, game, target_round=target_round, invoker=invoker)
        if isinstance(resolved, ProcessRoundResponse):
            return resolved
        rebuy_resolution = resolved

    fixtures = games_repository.list_round_fixtures(db, round_number=target_round)
    if not fixtures:
        return ProcessRoundResponse(
            game_id=game.id,
            round=target_round,
            status=game.status,
            message=f"No fixtures found for round {target_round}.",
            rebuy_resolution=rebuy_resolution,
        )

    lock_time = fixtures[0].kickoff_time
    if lock_time > now:
        if rebuy_resolution is not None:
            return ProcessRoundResponse(
                game_id=game.id,
                round=target_round,
                status=game.status,
                message=f"Rebuyers restored; round {target_round} is not locked yet.",
                rebuy_resolution=rebuy_resolution,
            )
        raise _not_ready(
            f"Round {target_round} is not locked yet. Run after first kickoff.",
            locks_at=lock_time.isoformat(),
        )

    if game.status == GameStatus.PENDING:
        alive_count = games_repository.count_players(db, game_id=game.id, status=PlayerStatus.ALIVE)
        if alive_count < game.min_players:
            return _cancel_under_subscribed_game(
                db, game, target_round=target_round, alive_count=alive_count, invoker=invoker
            )

    response = _auto_assign_round(db, game, target_round=target_round, fixtures=fixtures)
    response.rebuy_resolution = rebuy_resolution
    return response


def _cancel_under_subscribed_game(db, game, *, target_round: int, alive_count: int, invoker) -> ProcessRoundResponse:
    cancelled = games_repository.cancel_pending_game(db, game_id=game.id)
    db.commit()
    db.refresh(game)

    if not cancelled:
        return ProcessRoundResponse(
            game_id=game.id,
            round=target_round,
            status=game.status,
            message="Game was already updated by another run.",
            players_at_lock=alive_count,
        )

    log_info(
        logger,
        "Game cancelled below minimum players",
        game_id=game.id,
        round=target_round,
        alive=alive_count,
        min_players=game.min_players,
    )
    refund_result = _trigger_refund(
        db,
        game,
        round_number=target_round,
        invoker=invoker,
        scenario=RefundScenario.GAME_CANCELLED.value,
        reason=CANCELLATION_REASON,
    )
    return ProcessRoundResponse(
        game_id=game.id,
        round=target_round,
        status=GameStatus.CANCELLED,
        message=CANCELLATION_REASON,
        players_at_lock=alive_count,
        refund_trigger=_trigger_summary(refund_result),
    )


def _resolve_rebuy_window(db, game, *, target_round: int, invoker):
    """
    Close an expired rebuy window.

    Two or more paid rebuyers are restored and play continues (returns the
    resolution so the caller can go on to auto-assign). Otherwise the cohort
    eliminated in the wipeout round is declared the winners and the game completes
    (returns the final response).
    """
    rebuyers = games_repository.list_rebuyer_user_ids(db, game_id=game.id, rebuy_round=target_round)

    if len(rebuyers) >= 2:
        restored = games_repository.restore_players(db, game_id=game.id, user_ids=rebuyers, mark_rebuy=True)
        games_repository.clear_rebuy_deadline(db, game_id=game.id)
        db.commit()
        db.refresh(game)
        log_info(logger, "Rebuy window closed, play continues", game_id=game.id, round=target_round, rebuyers=len(rebuyers), restored=restored)
        return RebuyResolution(mode="continue", rebuyers=rebuyers)

    previous_round = max(1, target_round - 1)
    refund_result = None
    if len(rebuyers) == 1:
        lone_rebuyer = rebuyers[0]
        games_repository.demote_rebuyer(db, game_id=game.id, user_id=lone_rebuyer, round_number=previous_round)
        db.commit()
        refund_result = _trigger_refund(
            db,
            game,
            round_number=target_round,
            invoker=invoker,
            scenario=RefundScenario.SINGLE_REBUYER.value,
            user_id=lone_rebuyer,
            rebuy_round=target_round,
            reason=SINGLE_REBUYER_REASON,
        )

    winners = games_repository.restore_round_cohort(db, game_id=game.id, round_number=previous_round)
    completed = games_repository.complete_game(db, game_id=game.id)
    db.commit()
    db.refresh(game)

    resolution = RebuyResolution(
        mode="single_rebuyer" if rebuyers else "no_rebuyers",
        rebuyers=rebuyers,
        winners=winners,
    )
    if not completed:
        return ProcessRoundResponse(
            game_id=game.id,
            round=target_round,
            status=game.status,
            message="Rebuy window was already resolved by another run.",
            refund_trigger=_trigger_summary(refund_result),
            rebuy_resolution=resolution,
        )

    log_info(
        logger,
        "Rebuy window closed, game completed",
        game_id=game.id,
        round=target_round,
        rebuyers=len(rebuyers),
        winners=len(winners),
    )
    payout_result = None
    if winners:
        _notify_winners(db, game, winners, previous_round)
        db.commit()
        payout_result = _trigger_payouts(db, game, round_number=previous_round, invoker=invoker)

    return ProcessRoundResponse(
        game_id=game.id,
        round=target_round,
        status=GameStatus.COMPLETED,
        message="Rebuy window closed without enough rebuyers; the last cohort wins.",
        refund_trigger=_trigger_summary(refund_result),
        payout_trigger=_trigger_summary(payout_result),
        rebuy_resolution=resolution,
    )


def _auto_assign_round(db, game, *, target_round: int, fixtures) -> ProcessRoundResponse:
    alive_user_ids = games_repository.list_player_user_ids(db, game_id=game.id, status=PlayerStatus.ALIVE)
    users_with_pick = {pick.user_id for pick in games_repository.list_round_picks(db, game_id=game.id, round_number=target_round)}
    plan = plan_auto_assignments(
        alive_user_ids=alive_user_ids,
        users_with_pick=users_with_pick,
        used_teams_by_user=games_repository.list_used_team_ids_by_user(db, game_id=game.id),
        teams=round_teams(fixtures),
    )

    assigned = 0
    skipped = len(plan.skipped)
    for user_id, team_id in plan.assignments.items():
        try:
            games_repository.insert_pick(
                db,
                game_id=game.id,
                user_id=user_id,
                round_number=target_round,
                team_id=team_id,
                auto_assigned=True,
            )
            db.commit()
            assigned += 1
        except IntegrityError:
            db.rollback()
            skipped += 1
            log_warning(logger, "Pick appeared concurrently, auto-assign skipped", user_id=user_id, game_id=game.id, round=target_round)

    eliminated_users = []
    for user_id in plan.eliminations:
        if games_repository.eliminate_player(
            db,
            game_id=game.id,
            user_id=user_id,
            round_number=target_round,
            kick_reason=NO_AVAILABLE_TEAM,
        ):
            eliminated_users.append(user_id)
    if eliminated_users:
        core_notifications.notify_users(
            db,
            user_ids=eliminated_users,
            type="eliminated",
            title="You've been eliminated",
            body=f"There were no unused teams left for you in round {target_round} of {game.name}.",
            data={"game_id": game.id, "round": target_round, "reason": NO_AVAILABLE_TEAM},
            email=True,
        )

    games_repository.activate_round(db, game_id=game.id, round_number=target_round)
    db.commit()
    db.refresh(game)

    log_info(
        logger,
        "Round advanced",
        game_id=game.id,
        round=target_round,
        assigned=assigned,
        eliminated=len(eliminated_users),
        skipped=skipped,
    )
    return ProcessRoundResponse(
        game_id=game.id,
        round=target_round,
        status=game.status,
        assigned=assigned,
        eliminated=len(eliminated_users),
        skipped=skipped,
    )


# ---- result settlement ----


def process_results(db, *, game_id: Optional[str], requested_round: Optional[int], invoker) -> ProcessResultsResponse:
    game = _load_game(db, game_id)

    if game.status in GameStatus.TERMINAL:
        return ProcessResultsResponse(
            game_id=game.id,
            round=requested_round or game.current_round or game.starting_round,
            message=f"Game is {game.status}; nothing to do.",
            alive_count=games_repository.count_players(db, game_id=game.id, status=PlayerStatus.ALIVE),
            next_status=game.status,
        )
    if game.status == GameStatus.PENDING:
        raise _not_ready("Game has not started yet. Process the round after its first kickoff.")
    if game.rebuy_deadline is not None:
        raise _not_ready(
            "Rebuy window is open; results resume after it is resolved.",
            rebuy_deadline=game.rebuy_deadline.isoformat(),
        )

    target_round = _resolve_target_round(game, requested_round)
    fixtures = games_repository.list_round_fixtures(db, round_number=target_round)
    if not fixtures:
        raise _not_ready(f"No fixtures found for round {target_round}.")

    outcome = resolve_round_outcomes(fixtures)
    if not outcome.is_resolved:
        raise _not_ready(
            f"Round {target_round} has unresolved fixtures.",
            unresolved_fixture_ids=outcome.unresolved_fixture_ids,
        )

    picks_updated = 0
    eliminated_users: List[int] = []
    voided_users: List[int] = []
    for pick in games_repository.list_round_picks(db, game_id=game.id, round_number=target_round):
        result = outcome.outcomes.get(pick.team_id)
        if result is None or result == pick.result or pick.result not in PickResult.SETTLEABLE:
            continue
        if not games_repository.settle_pick(db, pick_id=pick.id, expected_result=pick.result, result=result):
            continue
        picks_updated += 1

        if eliminates(result):
            if games_repository.eliminate_player(
                db, game_id=game.id, user_id=pick.user_id, round_number=target_round
            ):
                eliminated_users.append(pick.user_id)
        elif result == PickResult.VOIDED:
            voided_users.append(pick.user_id)

    if eliminated_users:
        core_notifications.notify_users(
            db,
            user_ids=eliminated_users,
            type="eliminated",
            title="You've been eliminated",
            body=f"Your pick in round {target_round} of {game.name} did not win.",
            data={"game_id": game.id, "round": target_round},
            email=True,
        )
    if voided_users:
        core_notifications.notify_users(
            db,
            user_ids=voided_users,
            type="repick_required",
            title="Repick required",
            body=f"Your team's fixture in round {target_round} was postponed. Pick a new team for this round.",
            data={"game_id": game.id, "round": target_round},
            email=True,
        )
    db.commit()

    alive_count = games_repository.count_players(db, game_id=game.id, status=PlayerStatus.ALIVE)
    response = ProcessResultsResponse(
        game_id=game.id,
        round=target_round,
        picks_updated=picks_updated,
        eliminated=len(eliminated_users),
        alive_count=alive_count,
        next_status=game.status,
        has_voided_fixtures=outcome.has_voided_fixtures,
        voided_users=voided_users,
    )

    if picks_updated == 0 and game.current_round not in (None, target_round):
        response.message = f"Round {target_round} was already settled."
        return response

    rebuy_enabled = game.wipeout_mode == WipeoutMode.REBUY and (game.entry_fee_minor or 0) > 0
    transition = decide_round_transition(
        target_round=target_round,
        alive_count=alive_count,
        has_voided_fixtures=outcome.has_voided_fixtures,
        rebuy_enabled=rebuy_enabled,
    )
    rebuy_deadline = _now() + timedelta(hours=config.REBUY_WINDOW_HOURS) if transition.open_rebuy_window else None

    transitioned = games_repository.apply_round_transition(
        db,
        game_id=game.id,
        settled_round=target_round,
        status=transition.status,
        current_round=transition.current_round,
        rebuy_deadline=rebuy_deadline,
    )
    winners: List[int] = []
    if transitioned and transition.restore_cohort:
        winners = games_repository.restore_round_cohort(db, game_id=game.id, round_number=target_round)
    db.commit()
    db.refresh(game)

    response.next_status = game.status
    response.alive_count = games_repository.count_players(db, game_id=game.id, status=PlayerStatus.ALIVE)
    response.wipeout_detected = transition.wipeout
    response.rebuy_deadline = game.rebuy_deadline

    reopened_same_round = transition.status == GameStatus.ACTIVE and transition.current_round == target_round
    if not transitioned or reopened_same_round:
        # Nothing moved forward this pass, so no round-level notifications either
        return response

    log_info(
        logger,
        "Round settled",
        game_id=game.id,
        round=target_round,
        next_status=game.status,
        alive=response.alive_count,
        eliminated=len(eliminated_users),
        wipeout=transition.wipeout,
    )

    if transition.wipeout:
        _notify_wipeout(db, game, target_round=target_round, rebuy_window=transition.open_rebuy_window)

    if transition.status == GameStatus.ACTIVE and not transition.wipeout:
        survivors = games_repository.list_player_user_ids(db, game_id=game.id, status=PlayerStatus.ALIVE)
        core_notifications.notify_users(
            db,
            user_ids=survivors,
            type="round_results",
            title=f"You survived round {target_round}",
            body=f"Make your pick for round {transition.current_round} before the first kickoff.",
            data={"game_id": game.id, "round": target_round, "next_round": transition.current_round},
        )
    db.commit()

    if transition.status == GameStatus.COMPLETED:
        winners = winners or games_repository.list_player_user_ids(db, game_id=game.id, status=PlayerStatus.ALIVE)
        if winners:
            _notify_winners(db, game, winners, target_round)
            db.commit()
            response.payout_trigger = _trigger_summary(
                _trigger_payouts(db, game, round_number=target_round, invoker=invoker)
            )

    return response


def _notify_wipeout(db, game, *, target_round: int, rebuy_window: bool):
    if rebuy_window:
        body = (
            f"Total wipeout detected in round {target_round}. "
            f"Rebuy window is open for {config.REBUY_WINDOW_HOURS} hours."
        )
    elif game.wipeout_mode == WipeoutMode.REBUY:
        body = (
            f"Total wipeout detected in round {target_round}. "
            "Rebuy is unavailable, the last players standing share the pot."
        )
    else:
        body = f"Total wipeout detected in round {target_round}. The last players standing share the pot."

    core_notifications.notify_user(
        db,
        user_id=game.manager_id,
        type="wipeout_detected",
        title="Total wipeout detected",
        body=body,
        data={
            "game_id": game.id,
            "round": target_round,
            "reason": "total_wipeout",
            "wipeout_mode": game.wipeout_mode,
        },
    )

    if rebuy_window:
        cohort = games_repository.list_user_ids_eliminated_in_round(db, game_id=game.id, round_number=target_round)
        core_notifications.notify_users(
            db,
            user_ids=cohort,
            type="rebuy_window_open",
            title="Rebuy window open",
            body=(
                f"Round {target_round} ended in a wipeout. Rebuy is open until "
                f"{game.rebuy_deadline.strftime('%Y-%m-%d %H:%M UTC')}."
            ),
            data={"game_id": game.id, "round": target_round, "rebuy_round": game.current_round},
            email=True,
        )


# ---- pick submission ----


def submit_pick(db, *, current_user, request: SubmitPickRequest) -> SubmitPickResponse:
    if not request.game_id or request.round is None or request.team_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="game_id, round and team_id are required.",
        )

    game = _load_game(db, request.game_id)
    if game.status not in GameStatus.OPEN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This game is no longer accepting picks.")

    user_id = current_user.account_id
    player = games_repository.get_player(db, game_id=game.id, user_id=user_id)
    if not player or player.status != PlayerStatus.ALIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not an active player in this game.")

    open_round = game.current_round or game.starting_round
    if request.round < open_round:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Round {request.round} is already closed.")

    fixtures = games_repository.list_round_fixtures(db, round_number=request.round)
    if not fixtures:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Round fixtures are not available yet.")

    team_fixture = next(
        (f for f in fixtures if request.team_id in (f.home_team_id, f.away_team_id)),
        None,
    )
    if team_fixture is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="That team is not playing in this round.")

    now = _now()
    existing = games_repository.get_pick(db, game_id=game.id, user_id=user_id, round_number=request.round)
    if fixtures[0].kickoff_time <= now:
        # After the lock only a pick voided by a postponement may be replaced
        if not existing or existing.result != PickResult.VOIDED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Round is locked. Picks can no longer be changed.",
            )
        if team_fixture.status != FixtureStatus.SCHEDULED or team_fixture.kickoff_time <= now:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="That fixture has already kicked off.")

    if existing and existing.team_id == request.team_id:
        return SubmitPickResponse(
            action="noop",
            pick_id=existing.id,
            game_id=game.id,
            round=request.round,
            team_id=request.team_id,
        )

    if games_repository.user_has_used_team(
        db, game_id=game.id, user_id=user_id, team_id=request.team_id, exclude_round=request.round
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You have already used this team in this game.")

    try:
        if existing:
            if not games_repository.update_pick_team(
                db, pick_id=existing.id, expected_team_id=existing.team_id, team_id=request.team_id
            ):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Your pick changed meanwhile. Please try again.")
            pick_id = existing.id
            action = "updated"
        else:
            pick = games_repository.insert_pick(
                db,
                game_id=game.id,
                user_id=user_id,
                round_number=request.round,
                team_id=request.team_id,
                auto_assigned=False,
            )
            pick_id = pick.id
            action = "created"
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Your pick could not be saved. Please try again.")

    team = team_fixture.home_team if team_fixture.home_team_id == request.team_id else team_fixture.away_team
    team_name = team.name if team else "your team"
    core_notifications.notify_user(
        db,
        user_id=user_id,
        type="pick_confirmed",
        title="Pick confirmed",
        body=f"You picked {team_name} for round {request.round} of {game.name}.",
        data={"game_id": game.id, "round": request.round, "team_id": request.team_id},
        email=True,
    )
    db.commit()

    log_info(logger, "Pick submitted", user_id=user_id, game_id=game.id, round=request.round, team_id=request.team_id, action=action)
    return SubmitPickResponse(
        action=action,
        pick_id=pick_id,
        game_id=game.id,
        round=request.round,
        team_id=request.team_id,
    )


# ---- cron entry points ----


def _classify(result) -> str:
    if result.ok:
        return "processed"
    if result.status_code == status.HTTP_409_CONFLICT:
        return "waiting"
    return "failed"


def run_sweep(db, *, invoker) -> SweepResponse:
    games = games_repository.list_games_by_status(db, statuses=GameStatus.OPEN)
    targets = build_sweep_targets(games)
    summary = SweepResponse(games_discovered=len(games), sweep_targets=len(targets))

    for target in targets:
        body = {"game_id": target.game_id, "round": target.round}

        round_result = invoker.invoke(PROCESS_ROUND, body)
        round_outcome = _classify(round_result)
        setattr(summary, f"round_{round_outcome}", getattr(summary, f"round_{round_outcome}") + 1)

        results_result = invoker.invoke(PROCESS_RESULTS, body)
        result_outcome = _classify(results_result)
        setattr(summary, f"result_{result_outcome}", getattr(summary, f"result_{result_outcome}") + 1)

        errors = [r.describe() for r in (round_result, results_result) if _classify(r) == "failed"]
        summary.results.append(
            SweepGameResult(
                game_id=target.game_id,
                round=target.round,
                round_status_code=round_result.status_code,
                round_outcome=round_outcome,
                result_status_code=results_result.status_code,
                result_outcome=result_outcome,
                error="; ".join(errors) or None,
            )
        )

    log_info(
        logger,
        "Sweep finished",
        games=summary.games_discovered,
        targets=summary.sweep_targets,
        round_failed=summary.round_failed,
        result_failed=summary.result_failed,
    )
    return summary


def send_round_reminders(db) -> RoundRemindersResponse:
    now = _now()
    window_end = now + timedelta(hours=config.ROUND_REMINDER_LEAD_HOURS)
    window_start = window_end - timedelta(hours=config.ROUND_REMINDER_WINDOW_HOURS)

    checked_games = 0
    reminders_sent = 0
    skipped_already_sent = 0
    lock_times = {}

    for game in games_repository.list_active_games_with_round(db):
        round_number = game.current_round
        if round_number not in lock_times:
            lock_times[round_number] = games_repository.get_round_lock_time(db, round_number=round_number)
        lock_time = lock_times[round_number]
        if lock_time is None or not (window_start < lock_time <= window_end):
            continue

        checked_games += 1
        game_id, game_name = game.id, game.name
        for user_id in games_repository.list_user_ids_without_pick(db, game_id=game_id, round_number=round_number):
            try:
                notification = core_notifications.notify_user(
                    db,
                    user_id=user_id,
                    type=REMINDER_TYPE,
                    title=f"Round {round_number} locks soon",
                    body=f"You haven't picked a team for round {round_number} of {game_name} yet.",
                    data={"game_id": game_id, "round": round_number},
                    dedupe_key=f"{REMINDER_TYPE}:{game_id}:{round_number}:{user_id}",
                    email=True,
                )
                db.commit()
            except IntegrityError:
                # A concurrent run inserted the same dedupe key first
                db.rollback()
                skipped_already_sent += 1
                log_warning(logger, "Reminder already sent by another run", game_id=game_id, round=round_number, user_id=user_id)
                continue
            if notification is None:
                skipped_already_sent += 1
            else:
                reminders_sent += 1

    log_info(
        logger,
        "Round reminders sent",
        checked_games=checked_games,
        sent=reminders_sent,
        skipped=skipped_already_sent,
    )
    return RoundRemindersResponse(
        checked_games=checked_games,
        reminders_sent=reminders_sent,
        skipped_already_sent=skipped_already_sent,
    )
