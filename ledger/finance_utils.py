from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.db.models import DecimalField, F, Sum, Value
from django.db.models.functions import Coalesce, Greatest

from .activity import log_staff_activity
from .allocation import AllocationResult, run_allocation, settlement_status
from .models import (
    ExtraWork,
    ExtraWorkPayment,
    PaymentStage,
    PaymentTransaction,
    Project,
    ProjectCost,
    StaffActivity,
    User,
    VendorCost,
    VendorExtraWork,
    VendorExtraWorkPayment,
    VendorPaymentStage,
    VendorPaymentTransaction,
)
from .proofs import delete_proof_file, validate_proof_file
from .stages import required_amount

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass(frozen=True)
class LedgerSide:
    """The client ledger and the vendor ledger share every operation; only the tables differ."""

    name: str
    cost_model: type
    stage_model: type
    payment_model: type
    extra_work_model: type
    extra_work_payment_model: type
    activity_category: str


CLIENT_LEDGER = LedgerSide(
    name='client',
    cost_model=ProjectCost,
    stage_model=PaymentStage,
    payment_model=PaymentTransaction,
    extra_work_model=ExtraWork,
    extra_work_payment_model=ExtraWorkPayment,
    activity_category=StaffActivity.Category.ACCOUNTS,
)

VENDOR_LEDGER = LedgerSide(
    name='vendor',
    cost_model=VendorCost,
    stage_model=VendorPaymentStage,
    payment_model=VendorPaymentTransaction,
    extra_work_model=VendorExtraWork,
    extra_work_payment_model=VendorExtraWorkPayment,
    activity_category=StaffActivity.Category.VENDOR_ACCOUNTS,
)


def ledger_side(vendor: bool = False) -> LedgerSide:
    return VENDOR_LEDGER if vendor else CLIENT_LEDGER


def side_for_model(model) -> LedgerSide:
    for side in (CLIENT_LEDGER, VENDOR_LEDGER):
        if model in (
            side.cost_model,
            side.stage_model,
            side.payment_model,
            side.extra_work_model,
            side.extra_work_payment_model,
        ):
            return side
    raise LookupError(f"{model.__name__} is not a ledger model.")


def parse_amount(value, *, field: str = 'amount') -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError({field: 'Enter a valid amount.'}) from None
    if not amount.is_finite():
        raise ValidationError({field: 'Enter a valid amount.'})
    return amount


def _positive_amount(value, *, field: str = 'amount') -> Decimal:
    amount = parse_amount(value, field=field)
    if amount <= 0:
        raise ValidationError({field: 'Amount must be greater than zero.'})
    return amount


# --- Stage ledger ---------------------------------------------------------


def sync_stage_requirements(cost) -> list:
    """Create missing stage rows and rescale required amounts from ``cost.total_cost``.

    Paid amounts and transaction history are preserved; only the requirement
    side of each stage (and therefore its status) moves.
    """
    rows = []
    with db_transaction.atomic():
        manager = cost.stages
        existing = {row.stage: row for row in manager.select_for_update()}
        for position, definition in enumerate(cost.catalog):
            required = required_amount(cost.total_cost, definition.percentage)
            row = existing.get(definition.key)
            if row is None:
                row = manager.create(
                    stage=definition.key,
                    position=position,
                    percentage=definition.percentage,
                    required_amount=required,
                    status=settlement_status(ZERO, required),
                )
            else:
                row.position = position
                row.percentage = definition.percentage
                row.required_amount = required
                row.status = settlement_status(row.paid_amount, required)
                row.save(update_fields=['position', 'percentage', 'required_amount', 'status', 'updated_at'])
            rows.append(row)
    logger.info(
        "Synced %s %s stage(s) for project %s at total cost %s",
        len(rows), cost.catalog.name, cost.project_id, cost.total_cost,
    )
    return rows


def set_project_cost(project: Project, total_cost, *, actor: Optional[User], vendor: bool = False):
    """Create or overwrite the contract value for ``project``; stages follow via the cost signal."""
    side = ledger_side(vendor)
    amount = parse_amount(total_cost, field='total_cost')
    if amount < 0:
        raise ValidationError({'total_cost': 'Project cost must be zero or greater.'})

    with db_transaction.atomic():
        cost = side.cost_model.objects.select_for_update().filter(project=project).first()
        if cost is None:
            cost = side.cost_model(project=project)
        cost.total_cost = amount
        cost.created_by = actor
        cost.full_clean()
        cost.save()

    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Set {side.name} cost for {project} to {amount}.",
        project_id=project.pk,
    )
    return cost


def _store_payment(payment):
    """Insert ``payment``; if the insert fails, remove the proof file it already wrote."""
    try:
        with db_transaction.atomic():
            payment.save()
    except Exception:
        stored = payment.proof.name if payment.proof and payment.proof._committed else ''
        if stored:
            logger.warning("Payment insert failed, removing orphaned proof %s", stored)
            delete_proof_file(stored)
        raise
    return payment


def _build_payment(
    model,
    *,
    amount,
    payment_date,
    actor: Optional[User],
    payment_method: str = '',
    reference_number: str = '',
    notes: str = '',
    proof=None,
    **relations,
):
    amount = _positive_amount(amount)
    if not payment_date:
        raise ValidationError({'payment_date': 'Payment date is required.'})
    if proof:
        try:
            validate_proof_file(proof)
        except ValidationError as exc:
            raise ValidationError({'proof': exc.messages}) from exc
    payment = model(
        amount=amount,
        payment_date=payment_date,
        payment_method=(payment_method or '').strip(),
        reference_number=(reference_number or '').strip(),
        notes=notes or '',
        recorded_by=actor,
        **relations,
    )
    if proof:
        payment.proof = proof
    payment.full_clean()
    return payment


def record_stage_payment(stage, *, amount, payment_date, actor: Optional[User], **details):
    """Append a payment to ``stage``. Overpaying is allowed; the allocator handles surplus at read time."""
    side = side_for_model(type(stage))
    payment = _build_payment(
        side.payment_model,
        project_id=stage.project_id,
        stage=stage,
        amount=amount,
        payment_date=payment_date,
        actor=actor,
        **details,
    )
    _store_payment(payment)
    stage.refresh_from_db(fields=['paid_amount', 'status', 'updated_at'])
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Recorded {side.name} payment {payment.amount} for {stage}.",
        project_id=stage.project_id,
    )
    return payment


def _locked_payment(payment):
    """Re-read ``payment`` under a row lock; raises ``DoesNotExist`` once it has been reversed."""
    return type(payment).objects.select_for_update().get(pk=payment.pk)


def reverse_stage_payment(payment, *, actor: Optional[User]) -> None:
    """Delete a stage payment; the stage is debited and the proof removed by the delete signal."""
    side = side_for_model(type(payment))
    stage_label = str(payment.stage)
    amount = payment.amount
    project_id = payment.project_id
    with db_transaction.atomic():
        _locked_payment(payment).delete()
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Reversed {side.name} payment {amount} for {stage_label}.",
        project_id=project_id,
    )


# --- Extra work -------------------------------------------------------------


def add_extra_work(project: Project, *, amount, description: str, actor: Optional[User], vendor: bool = False):
    side = ledger_side(vendor)
    work = side.extra_work_model(
        project=project,
        amount=_positive_amount(amount),
        description=(description or '').strip(),
        created_by=actor,
    )
    work.full_clean()
    work.save()
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Added {side.name} extra work {work.amount} for {project}.",
        project_id=project.pk,
    )
    return work


def update_extra_work(work, *, actor: Optional[User], amount=None, description: Optional[str] = None):
    side = side_for_model(type(work))
    with db_transaction.atomic():
        work = type(work).objects.select_for_update().get(pk=work.pk)
        if amount is not None:
            work.amount = _positive_amount(amount)
        if description is not None:
            work.description = description.strip()
        work.status = settlement_status(work.paid_amount, work.amount)
        work.full_clean()
        work.save()
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Updated {side.name} extra work for {work.project}.",
        project_id=work.project_id,
    )
    return work


def record_extra_work_payment(work, *, amount, payment_date, actor: Optional[User], **details):
    side = side_for_model(type(work))
    payment = _build_payment(
        side.extra_work_payment_model,
        extra_work=work,
        amount=amount,
        payment_date=payment_date,
        actor=actor,
        **details,
    )
    _store_payment(payment)
    work.refresh_from_db(fields=['paid_amount', 'status', 'updated_at'])
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Recorded {side.name} extra work payment {payment.amount} for {work.project}.",
        project_id=work.project_id,
    )
    return payment


def reverse_extra_work_payment(payment, *, actor: Optional[User]) -> None:
    side = side_for_model(type(payment))
    amount = payment.amount
    project_id = payment.extra_work.project_id
    with db_transaction.atomic():
        _locked_payment(payment).delete()
    log_staff_activity(
        actor=actor,
        category=side.activity_category,
        message=f"Reversed {side.name} extra work payment {amount}.",
        project_id=project_id,
    )


# --- Read side --------------------------------------------------------------


@dataclass
class ProjectPaymentSummary:
    project: Project
    total_cost: Decimal
    total_paid: Decimal
    total_pending: Decimal
    extra_work_total: Decimal
    extra_work_paid: Decimal
    allocation: AllocationResult
    extra_works: List = field(default_factory=list)

    @property
    def has_cost(self) -> bool:
        return self.total_cost > 0


def ordered_stages(project: Project, *, vendor: bool = False) -> list:
    side = ledger_side(vendor)
    relation = side.cost_model.stage_relation
    prefetched = getattr(project, '_prefetched_objects_cache', {}) or {}
    if relation in prefetched:
        rows = list(getattr(project, relation).all())
    else:
        rows = list(side.stage_model.objects.filter(project=project))
    return sorted(rows, key=lambda row: row.position)


def _extra_works(project: Project, side: LedgerSide) -> list:
    relation = 'vendor_extra_works' if side is VENDOR_LEDGER else 'extra_works'
    return list(getattr(project, relation).all())


def project_payment_summary(project: Project, *, vendor: bool = False) -> ProjectPaymentSummary:
    side = ledger_side(vendor)
    cost = side.cost_model.objects.filter(project=project).first()
    stages = ordered_stages(project, vendor=vendor)
    works = _extra_works(project, side)
    total_cost = cost.total_cost if cost else ZERO
    total_paid = sum((row.paid_amount for row in stages), ZERO)
    return ProjectPaymentSummary(
        project=project,
        total_cost=total_cost,
        total_paid=total_paid,
        total_pending=total_cost - total_paid,
        extra_work_total=sum((work.amount for work in works), ZERO),
        extra_work_paid=sum((work.paid_amount for work in works), ZERO),
        allocation=run_allocation(stages),
        extra_works=works,
    )


def _decimal_zero():
    return Value(ZERO, output_field=DecimalField(max_digits=16, decimal_places=2))


def _sum(queryset, column) -> Decimal:
    zero = _decimal_zero()
    return queryset.aggregate(total=Coalesce(Sum(column), zero))['total']


def ledger_totals(projects: Optional[Iterable[Project]] = None, *, vendor: bool = False) -> dict:
    """Raw ledger totals; these do not reflect carry-forward between stages."""
    side = ledger_side(vendor)
    stages = side.stage_model.objects.all()
    works = side.extra_work_model.objects.all()
    if projects is not None:
        stages = stages.filter(project__in=projects)
        works = works.filter(project__in=projects)

    stage_paid = _sum(stages, 'paid_amount')
    stage_required = _sum(stages, 'required_amount')
    extra_total = _sum(works, 'amount')
    extra_paid = _sum(works, 'paid_amount')
    return {
        'total_received': stage_paid + extra_paid,
        'total_pending': (stage_required - stage_paid) + (extra_total - extra_paid),
        'extra_work_total': extra_total,
    }


def effective_totals(projects: Optional[Iterable[Project]] = None, *, vendor: bool = False) -> dict:
    """Carry-forward view of the same money, summed over each project's allocation."""
    side = ledger_side(vendor)
    relation = side.cost_model.stage_relation
    if projects is None:
        queryset = Project.objects.all()
    elif hasattr(projects, 'prefetch_related'):
        queryset = projects
    else:
        queryset = Project.objects.filter(pk__in=[project.pk for project in projects])
    applied = ZERO
    pending = ZERO
    unapplied = ZERO
    for project in queryset.prefetch_related(relation):
        result = run_allocation(ordered_stages(project, vendor=vendor))
        applied += result.total_applied
        pending += result.total_effective_balance
        unapplied += result.unapplied_excess

    works = side.extra_work_model.objects.all()
    if projects is not None:
        works = works.filter(project__in=projects)
    extra_paid = _sum(works, 'paid_amount')
    # Each item settles on its own; an overpaid item does not cover another's balance.
    extra_pending = _sum(works, Greatest(F('amount') - F('paid_amount'), _decimal_zero()))
    return {
        'total_applied': applied + extra_paid,
        'total_pending': pending + extra_pending,
        'unapplied_excess': unapplied,
    }


# --- Repair -----------------------------------------------------------------


def _rebuild_rows(queryset, relation: str) -> int:
    decimal_zero = _decimal_zero()
    fixed = 0
    for row in queryset.annotate(ledger_total=Coalesce(Sum(f'{relation}__amount'), decimal_zero)):
        new_status = settlement_status(row.ledger_total, row.required_value)
        if row.paid_amount == row.ledger_total and row.status == new_status:
            continue
        logger.warning(
            "Rebuilding %s %s: paid %s -> %s", type(row).__name__, row.pk, row.paid_amount, row.ledger_total
        )
        type(row).objects.filter(pk=row.pk).update(paid_amount=row.ledger_total, status=new_status)
        fixed += 1
    return fixed


def rebuild_payment_ledgers(*, vendor: bool = False, dry_run: bool = False) -> int:
    """Recompute stored paid amounts and statuses from the transaction log. Returns rows changed."""
    side = ledger_side(vendor)
    with db_transaction.atomic():
        for cost in side.cost_model.objects.select_related('project'):
            sync_stage_requirements(cost)
        fixed = _rebuild_rows(side.stage_model.objects.all(), 'transactions')
        fixed += _rebuild_rows(side.extra_work_model.objects.all(), 'payments')
        if dry_run:
            db_transaction.set_rollback(True)
    return fixed
