"""Pro-rata allocation of a fee pool across weighted recipients.

All arithmetic is on integer base units. Floor shares are computed first,
zero shares dropped, and the leftover units handed out one at a time to the
heaviest recipients (stable order on ties) so the total is exactly the pool.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel

from wagerhall.amounts import to_base_units
from wagerhall.services.roster import RosterRow

from .exceptions import AllocationInvariantError


class Recipient(BaseModel):
    wallet: str
    weight: int


class Allocation(BaseModel):
    wallet: str
    weight: int
    amount: int


def build_recipients(rows: Iterable[RosterRow], decimals: int) -> list[Recipient]:
    """Positive-balance rows, one per wallet, keeping the largest weight."""
    by_wallet: dict[str, int] = {}

    for row in rows:
        if not row.wallet or row.balance <= 0:
            continue
        weight = to_base_units(row.balance, decimals)
        if weight <= 0:
            continue
        if weight > by_wallet.get(row.wallet, 0):
            by_wallet[row.wallet] = weight

    return [Recipient(wallet=w, weight=weight) for w, weight in by_wallet.items()]


def compute_pool(delta: int, numerator: int = 2, denominator: int = 3) -> int:
    """Distributable share of newly accrued fees; the rest is retained."""
    if delta <= 0:
        return 0
    return (delta * numerator) // denominator


def allocate_pro_rata(pool: int, recipients: list[Recipient]) -> list[Allocation]:
    """Split ``pool`` by weight; result is ordered by descending weight."""
    total_weight = sum(r.weight for r in recipients)
    if pool <= 0 or total_weight <= 0:
        return []

    allocations = [
        Allocation(wallet=r.wallet, weight=r.weight, amount=(pool * r.weight) // total_weight)
        for r in recipients
    ]
    allocations = [a for a in allocations if a.amount > 0]
    if not allocations:
        return []

    # sorted() is stable: equal weights keep roster order
    allocations.sort(key=lambda a: a.weight, reverse=True)

    remainder = pool - sum(a.amount for a in allocations)
    each, extra = divmod(remainder, len(allocations))
    for i, allocation in enumerate(allocations):
        allocation.amount += each + (1 if i < extra else 0)

    return allocations


def assert_within_pool(allocations: list[Allocation], pool: int) -> int:
    """Return the allocated total, raising if it exceeds the pool."""
    allocated = sum(a.amount for a in allocations)
    if allocated > pool:
        raise AllocationInvariantError(allocated, pool)
    return allocated
