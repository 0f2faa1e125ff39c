from fastapi import APIRouter

from . import internal, picks, process_results, process_round

router = APIRouter()
router.include_router(process_round.router)
router.include_router(process_results.router)
router.include_router(picks.router)
router.include_router(internal.router)
