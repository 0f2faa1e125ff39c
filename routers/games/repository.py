"""Games domain repository layer.

Every state transition is a filtered UPDATE on the expected prior state; callers
use the returned row count to decide whether follow-up side effects should run.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session, joinedload


# ---- games ----


def get_game(db: Session, *, game_id: str):
    from models import Game

    return db.query(Game).filter(Game.id == game_id).first()


def list_games_by_status(db: Session, *, statuses):
    from models import Game

    return (
        db.query(Game)
        .filter(Game.status.in_(statuses))
        .order_by(Game.created_at, Game.id)
        .all()
    )


def list_active_games_with_round(db: Session):
    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(Game.status == GameStatus.ACTIVE, Game.current_round.isnot(None))
        .order_by(Game.created_at, Game.id)
        .all()
    )


def cancel_pending_game(db: Session, *, game_id: str) -> int:
    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(Game.id == game_id, Game.status == GameStatus.PENDING)
        .update({Game.status: GameStatus.CANCELLED}, synchronize_session=False)
    )


def activate_round(db: Session, *, game_id: str, round_number: int) -> int:
    """Set the current round if none is set yet and flip pending games to active."""
    from models import Game, GameStatus

    updated = (
        db.query(Game)
        .filter(Game.id == game_id, Game.current_round.is_(None))
        .update({Game.current_round: round_number}, synchronize_session=False)
    )
    updated += (
        db.query(Game)
        .filter(Game.id == game_id, Game.status == GameStatus.PENDING)
        .update({Game.status: GameStatus.ACTIVE}, synchronize_session=False)
    )
    return updated


def clear_rebuy_deadline(db: Session, *, game_id: str) -> int:
    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(
            Game.id == game_id,
            Game.status == GameStatus.ACTIVE,
            Game.rebuy_deadline.isnot(None),
        )
        .update({Game.rebuy_deadline: None}, synchronize_session=False)
    )


def complete_game(db: Session, *, game_id: str) -> int:
    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(Game.id == game_id, Game.status == GameStatus.ACTIVE)
        .update(
            {Game.status: GameStatus.COMPLETED, Game.rebuy_deadline: None},
            synchronize_session=False,
        )
    )


def apply_round_transition(
    db: Session,
    *,
    game_id: str,
    settled_round: int,
    status: str,
    current_round: int,
    rebuy_deadline: Optional[datetime],
) -> int:
    """Move the game past ``settled_round`` unless another pass already did."""
    from sqlalchemy import or_

    from models import Game, GameStatus

    return (
        db.query(Game)
        .filter(
            Game.id == game_id,
            Game.status == GameStatus.ACTIVE,
            or_(Game.current_round.is_(None), Game.current_round == settled_round),
        )
        .update(
            {
                Game.status: status,
                Game.current_round: current_round,
                Game.rebuy_deadline: rebuy_deadline,
            },
            synchronize_session=False,
        )
    )


# ---- fixtures ----


def list_round_fixtures(db: Session, *, round_number: int):
    from models import Fixture

    return (
        db.query(Fixture)
        .options(joinedload(Fixture.home_team), joinedload(Fixture.away_team))
        .filter(Fixture.round == round_number)
        .order_by(Fixture.kickoff_time, Fixture.id)
        .all()
    )


def get_round_lock_time(db: Session, *, round_number: int) -> Optional[datetime]:
    from sqlalchemy import func

    from models import Fixture

    return (
        db.query(func.min(Fixture.kickoff_time))
        .filter(Fixture.round == round_number)
        .scalar()
    )


# ---- players ----


def get_player(db: Session, *, game_id: str, user_id: int):
    from models import GamePlayer

    return (
        db.query(GamePlayer)
        .filter(GamePlayer.game_id == game_id, GamePlayer.user_id == user_id)
        .first()
    )


def list_player_user_ids(db: Session, *, game_id: str, status: str) -> List[int]:
    from models import GamePlayer

    rows = (
        db.query(GamePlayer.user_id)
        .filter(GamePlayer.game_id == game_id, GamePlayer.status == status)
        .order_by(GamePlayer.joined_at, GamePlayer.id)
        .all()
    )
    return [row[0] for row in rows]


def count_players(db: Session, *, game_id: str, status: str) -> int:
    from sqlalchemy import func

    from models import GamePlayer

    return (
        db.query(func.count(GamePlayer.id))
        .filter(GamePlayer.game_id == game_id, GamePlayer.status == status)
        .scalar()
        or 0
    )


def list_user_ids_eliminated_in_round(db: Session, *, game_id: str, round_number: int) -> List[int]:
    from models import GamePlayer, PlayerStatus

    rows = (
        db.query(GamePlayer.user_id)
        .filter(
            GamePlayer.game_id == game_id,
            GamePlayer.status == PlayerStatus.ELIMINATED,
            GamePlayer.eliminated_round == round_number,
        )
        .all()
    )
    return [row[0] for row in rows]


def eliminate_player(
    db: Session,
    *,
    game_id: str,
    user_id: int,
    round_number: int,
    kick_reason: Optional[str] = None,
) -> int:
    from models import GamePlayer, PlayerStatus

    values = {
        GamePlayer.status: PlayerStatus.ELIMINATED,
        GamePlayer.eliminated_round: round_number,
    }
    if kick_reason:
        values[GamePlayer.kick_reason] = kick_reason
    return (
        db.query(GamePlayer)
        .filter(
            GamePlayer.game_id == game_id,
            GamePlayer.user_id == user_id,
            GamePlayer.status == PlayerStatus.ALIVE,
        )
        .update(values, synchronize_session=False)
    )


def demote_rebuyer(db: Session, *, game_id: str, user_id: int, round_number: int) -> int:
    """Put a lone rebuyer back with the cohort eliminated at ``round_number``."""
    from models import GamePlayer, PlayerStatus

    return (
        db.query(GamePlayer)
        .filter(
            GamePlayer.game_id == game_id,
            GamePlayer.user_id == user_id,
            GamePlayer.status.in_([PlayerStatus.ALIVE, PlayerStatus.ELIMINATED]),
        )
        .update(
            {
                GamePlayer.status: PlayerStatus.ELIMINATED,
                GamePlayer.eliminated_round: round_number,
                GamePlayer.is_rebuy: False,
            },
            synchronize_session=False,
        )
    )


def restore_players(db: Session, *, game_id: str, user_ids, mark_rebuy: bool) -> int:
    """Bring eliminated players back to alive. Kicked players are never restored."""
    from models import GamePlayer, PlayerStatus

    user_ids = list(user_ids)
    if not user_ids:
        return 0
    values = {
        GamePlayer.status: PlayerStatus.ALIVE,
        GamePlayer.eliminated_round: None,
        GamePlayer.kick_reason: None,
    }
    if mark_rebuy:
        values[GamePlayer.is_rebuy] = True
    return (
        db.query(GamePlayer)
        .filter(
            GamePlayer.game_id == game_id,
            GamePlayer.user_id.in_(user_ids),
            GamePlayer.status == PlayerStatus.ELIMINATED,
        )
        .update(values, synchronize_session=False)
    )


def restore_round_cohort(db: Session, *, game_id: str, round_number: int) -> List[int]:
    user_ids = list_user_ids_eliminated_in_round(db, game_id=game_id, round_number=round_number)
    restore_players(db, game_id=game_id, user_ids=user_ids, mark_rebuy=False)
    return user_ids


# ---- payments (read-only) ----


def list_rebuyer_user_ids(db: Session, *, game_id: str, rebuy_round: int) -> List[int]:
    from models import Payment, PaymentStatus, PaymentType

    rows = (
        db.query(Payment.user_id)
        .filter(
            Payment.game_id == game_id,
            Payment.payment_type == PaymentType.REBUY,
            Payment.rebuy_round == rebuy_round,
            Payment.status == PaymentStatus.SUCCEEDED,
        )
        .distinct()
        .order_by(Payment.user_id)
        .all()
    )
    return [row[0] for row in rows]


# ---- picks ----


def list_round_picks(db: Session, *, game_id: str, round_number: int):
    from models import Pick

    return (
        db.query(Pick)
        .filter(Pick.game_id == game_id, Pick.round == round_number)
        .order_by(Pick.id)
        .all()
    )


def get_pick(db: Session, *, game_id: str, user_id: int, round_number: int):
    from models import Pick

    return (
        db.query(Pick)
        .filter(
            Pick.game_id == game_id,
            Pick.user_id == user_id,
            Pick.round == round_number,
        )
        .first()
    )


def list_used_team_ids_by_user(db: Session, *, game_id: str) -> Dict[int, Set[int]]:
    from models import Pick

    used: Dict[int, Set[int]] = {}
    for user_id, team_id in db.query(Pick.user_id, Pick.team_id).filter(Pick.game_id == game_id):
        used.setdefault(user_id, set()).add(team_id)
    return used


def user_has_used_team(
    db: Session, *, game_id: str, user_id: int, team_id: int, exclude_round: int
) -> bool:
    from models import Pick

    return (
        db.query(Pick.id)
        .filter(
            Pick.game_id == game_id,
            Pick.user_id == user_id,
            Pick.team_id == team_id,
            Pick.round != exclude_round,
        )
        .first()
        is not None
    )


def insert_pick(
    db: Session,
    *,
    game_id: str,
    user_id: int,
    round_number: int,
    team_id: int,
    auto_assigned: bool,
):
    """Add a pick and flush; a concurrent writer surfaces as IntegrityError."""
    from models import Pick, PickResult

    pick = Pick(
        game_id=game_id,
        user_id=user_id,
        round=round_number,
        team_id=team_id,
        result=PickResult.PENDING,
        auto_assigned=auto_assigned,
    )
    db.add(pick)
    db.flush()
    return pick


def update_pick_team(db: Session, *, pick_id: int, expected_team_id: int, team_id: int) -> int:
    from models import Pick, PickResult

    return (
        db.query(Pick)
        .filter(Pick.id == pick_id, Pick.team_id == expected_team_id)
        .update(
            {
                Pick.team_id: team_id,
                Pick.auto_assigned: False,
                Pick.result: PickResult.PENDING,
                Pick.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )


def settle_pick(db: Session, *, pick_id: int, expected_result: str, result: str) -> int:
    from models import Pick

    return (
        db.query(Pick)
        .filter(Pick.id == pick_id, Pick.result == expected_result)
        .update(
            {Pick.result: result, Pick.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )


def list_user_ids_without_pick(db: Session, *, game_id: str, round_number: int) -> List[int]:
    from models import GamePlayer, Pick, PlayerStatus

    from sqlalchemy import select

    picked = select(Pick.user_id).where(Pick.game_id == game_id, Pick.round == round_number)
    rows = (
        db.query(GamePlayer.user_id)
        .filter(
            GamePlayer.game_id == game_id,
            GamePlayer.status == PlayerStatus.ALIVE,
            GamePlayer.user_id.notin_(picked),
        )
        .order_by(GamePlayer.id)
        .all()
    )
    return [row[0] for row in rows]
