"""Sweep target discovery for the periodic cron pass."""

import logging
from dataclasses import dataclass
from typing import Iterable, List

from utils.logging_helpers import log_warning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepTarget:
    game_id: str
    round: int


def _valid_round(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def build_sweep_targets(games: Iterable) -> List[SweepTarget]:
    """One (game, round) per open game: current round, else starting round."""
    targets = []
    for game in games:
        if _valid_round(game.current_round):
            targets.append(SweepTarget(game_id=game.id, round=game.current_round))
        elif _valid_round(game.starting_round):
            targets.append(SweepTarget(game_id=game.id, round=game.starting_round))
        else:
            log_warning(
                logger,
                "Skipping game without a valid round",
                game_id=game.id,
                current_round=game.current_round,
                starting_round=game.starting_round,
            )
    return targets
