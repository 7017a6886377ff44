"""
Carry-forward allocation of stage payments.

Clients often pay ahead of schedule, e.g. settle the booking amount and part
of the next stage in one transfer. The surplus on a stage is treated as credit
toward the next stage only. Nothing here touches the database: the stored
``paid_amount`` of a stage always reflects the transactions tagged to it, and
the effective view is rebuilt on every read.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Protocol

ZERO = Decimal('0')

PENDING = 'pending'
PARTIAL = 'partial'
COMPLETED = 'completed'


class LedgerRow(Protocol):
    required_amount: Decimal
    paid_amount: Decimal


def settlement_status(paid: Decimal, required: Decimal) -> str:
    paid = Decimal(paid or 0)
    required = Decimal(required or 0)
    if paid >= required:
        return COMPLETED
    if paid > 0:
        return PARTIAL
    return PENDING


@dataclass(frozen=True)
class AllocatedStage:
    stage: Any
    required_amount: Decimal
    paid_amount: Decimal
    carried_in: Decimal
    effective_paid: Decimal
    effective_balance: Decimal
    effective_status: str

    @property
    def has_carry_forward(self) -> bool:
        return self.paid_amount < self.effective_paid

    @property
    def applied_amount(self) -> Decimal:
        """Portion of the effective payment that settles this stage."""
        return min(self.effective_paid, self.required_amount)

    @property
    def carried_out(self) -> Decimal:
        return self.effective_paid - self.applied_amount


@dataclass
class AllocationResult:
    stages: List[AllocatedStage] = field(default_factory=list)
    # Surplus left over after the final stage; not credited anywhere.
    unapplied_excess: Decimal = ZERO

    @property
    def total_applied(self) -> Decimal:
        return sum((row.applied_amount for row in self.stages), ZERO)

    @property
    def total_effective_balance(self) -> Decimal:
        return sum((row.effective_balance for row in self.stages), ZERO)


def run_allocation(stages: Iterable[LedgerRow]) -> AllocationResult:
    """Walk ``stages`` in the given order, pushing any overpayment forward."""
    result = AllocationResult()
    carry_forward = ZERO
    for stage in stages:
        required = Decimal(stage.required_amount or 0)
        paid = Decimal(stage.paid_amount or 0)
        effective_paid = paid + carry_forward
        result.stages.append(
            AllocatedStage(
                stage=stage,
                required_amount=required,
                paid_amount=paid,
                carried_in=carry_forward,
                effective_paid=effective_paid,
                effective_balance=max(required - effective_paid, ZERO),
                effective_status=settlement_status(effective_paid, required),
            )
        )
        carry_forward = max(effective_paid - required, ZERO)
    result.unapplied_excess = carry_forward
    return result


def allocate(stages: Iterable[LedgerRow]) -> List[AllocatedStage]:
    return run_allocation(stages).stages
