"""Prize pool arithmetic in integer minor units."""

from typing import List


def split_amounts(total_minor: int, count: int) -> List[int]:
    """
    Split ``total_minor`` into ``count`` shares that differ by at most one unit.

    The first ``total_minor % count`` shares get the extra unit, so the shares
    always add up to the total exactly.
    """
    if count <= 0:
        return []
    if total_minor <= 0:
        return [0] * count
    base, remainder = divmod(total_minor, count)
    return [base + 1 if index < remainder else base for index in range(count)]


def processing_fee_minor(entry_fee_minor: int, *, percent_bps: int, fixed_minor: int) -> int:
    """Card processing fee passed on to the player, rounded half up."""
    if entry_fee_minor <= 0:
        return 0
    return (entry_fee_minor * percent_bps + 5000) // 10000 + fixed_minor


def format_amount(amount_minor: int, currency: str) -> str:
    return f"{amount_minor / 100:.2f} {(currency or '').upper()}".strip()
