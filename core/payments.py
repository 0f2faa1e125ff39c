"""Payments facade for other domains.

Refunds and payouts are separate orchestration endpoints; other domains trigger
them through these helpers instead of importing the payments domain.
"""

from typing import Optional

from core.functions import InvocationResult
from core.ports.functions import FunctionInvokerPort

PROCESS_REFUND = "process-refund"
PROCESS_PAYOUTS = "process-payouts"


def trigger_refund(
    invoker: FunctionInvokerPort,
    *,
    game_id: str,
    scenario: str,
    user_id: Optional[int] = None,
    rebuy_round: Optional[int] = None,
    reason: Optional[str] = None,
) -> InvocationResult:
    body = {"game_id": game_id, "scenario": scenario}
    if user_id is not None:
        body["user_id"] = user_id
    if rebuy_round is not None:
        body["rebuy_round"] = rebuy_round
    if reason:
        body["reason"] = reason
    return invoker.invoke(PROCESS_REFUND, body)


def trigger_payouts(invoker: FunctionInvokerPort, *, game_id: str) -> InvocationResult:
    return invoker.invoke(PROCESS_PAYOUTS, {"game_id": game_id})
