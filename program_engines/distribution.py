"""
Module: program_engines.distribution
Responsibility:
    Split an amount across budget targets in proportion to a per-target
    weight (the target's unspent variance).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by AllocationLedger.distribute_remaining.

Invariants enforced:
    - Each share is rounded to 2 places independently, ROUND_HALF_UP, then
      capped at what is left of ``amount``.  The shares never sum past
      ``amount`` and fall short of it by at most 0.01 per target.
    - Shares that round to zero or below are dropped.
    - Output order follows input order.

Failure modes:
    - ValueError when the weights do not sum to a positive total.

Usage:
    from program_engines.distribution import DistributionEngine, DistributionTarget

    shares = DistributionEngine().distribute(
        amount=Decimal("1000.00"),
        targets=[
            DistributionTarget("BUD-002", Decimal("300")),
            DistributionTarget("BUD-003", Decimal("700")),
        ],
    )
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from program_kernel.domain.values import ZERO, round_money, to_decimal
from program_kernel.logging_config import get_logger
from program_engines.tracer import traced_engine

logger = get_logger("engines.distribution")


@dataclass(frozen=True)
class DistributionTarget:
    target_id: str
    weight: Decimal

    def __post_init__(self) -> None:
        if self.weight < ZERO:
            raise ValueError("Weight cannot be negative")


@dataclass(frozen=True)
class DistributionShare:
    target_id: str
    amount: Decimal
    ratio: Decimal


class DistributionEngine:
    """
    Proportional splitter.

    Contract:
        Pure; no I/O.
    Guarantees:
        - Every returned share is strictly positive.
        - ``amount - 0.01 * len(targets) <= sum(shares) <= amount``.
    Non-goals:
        - Does not hand a shortfall residue to any target.
    """

    @traced_engine("distribution", "1.0", fingerprint_fields=("amount", "targets"))
    def distribute(
        self,
        amount: Decimal,
        targets: Sequence[DistributionTarget],
    ) -> list[DistributionShare]:
        """
        Proportional shares of ``amount``.

        Preconditions:
            ``targets`` carry non-negative weights with a positive total.

        Raises:
            ValueError: If the total weight is not positive.
        """
        t0 = time.monotonic()
        amount = to_decimal(amount)
        total_weight = sum((t.weight for t in targets), ZERO)
        if total_weight <= ZERO:
            raise ValueError("Total distribution weight must be positive")

        shares: list[DistributionShare] = []
        left = amount
        for target in targets:
            ratio = target.weight / total_weight
            share = min(round_money(amount * ratio), left)
            if share <= ZERO:
                continue
            left -= share
            shares.append(DistributionShare(target.target_id, share, ratio))

        logger.info("distribution_computed", extra={
            "amount": str(amount),
            "target_count": len(targets),
            "share_count": len(shares),
            "distributed": str(sum((s.amount for s in shares), ZERO)),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return shares
