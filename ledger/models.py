from decimal import Decimal
import os
import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from .allocation import COMPLETED, PARTIAL, PENDING, settlement_status
from .stages import CLIENT_STAGES, VENDOR_STAGES


class User(AbstractUser):
    class Roles(models.TextChoices):
        ADMIN = 'admin', 'Admin'
        DESIGN_HEAD = 'design_head', 'Design Head'
        DESIGNER = 'designer', 'Designer'
        EXECUTION_HEAD = 'execution_head', 'Execution Head'
        EXECUTION_MANAGER = 'execution_manager', 'Execution Manager'
        SITE_SUPERVISOR = 'site_supervisor', 'Site Supervisor'
        CLIENT = 'client', 'Client'
        ACCOUNT_MANAGER = 'account_manager', 'Account Manager'

    phone = models.CharField(max_length=50, blank=True)
    role = models.CharField(max_length=32, choices=Roles.choices, default=Roles.DESIGNER)

    def __str__(self) -> str:
        return f"{self.get_full_name() or self.username} ({self.get_role_display()})"

    def has_any_role(self, *roles: str) -> bool:
        return self.role in roles


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class SettlementStatus(models.TextChoices):
    PENDING = PENDING, 'Pending'
    PARTIAL = PARTIAL, 'Partial'
    COMPLETED = COMPLETED, 'Completed'


class Project(TimeStampedModel):
    class Status(models.TextChoices):
        LEAD = 'lead', 'Lead'
        DESIGN_IN_PROGRESS = 'design_in_progress', 'Design In Progress'
        DESIGN_APPROVAL_PENDING = 'design_approval_pending', 'Design Approval Pending'
        DESIGN_APPROVED = 'design_approved', 'Design Approved'
        EXECUTION_STARTED = 'execution_started', 'Execution Started'
        WORK_IN_PROGRESS = 'work_in_progress', 'Work In Progress'
        FINISHING = 'finishing', 'Finishing'
        HANDOVER_PENDING = 'handover_pending', 'Handover Pending'
        SNAG_FIX = 'snag_fix', 'Snag Fix'
        COMPLETED = 'completed', 'Completed'

    client_name = models.CharField(max_length=255)
    client_email = models.EmailField(blank=True)
    client_phone = models.CharField(max_length=50, blank=True)
    location = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.LEAD)
    start_date = models.DateField(null=True, blank=True)
    deadline = models.DateField(null=True, blank=True)
    client_user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='client_projects'
    )
    members = models.ManyToManyField(settings.AUTH_USER_MODEL, blank=True, related_name='assigned_projects')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='projects_created'
    )

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='ledger_project_status_idx'),
            models.Index(fields=['client_name'], name='ledger_project_client_idx'),
        ]

    def __str__(self) -> str:
        return self.client_name


def proof_upload_to(instance, filename: str) -> str:
    prefix = (getattr(settings, 'PROOF_UPLOAD_PREFIX', '') or 'payment-proofs').strip('/')
    ext = os.path.splitext(filename or '')[1].lower()
    return f"{prefix}/{instance.proof_project_id}/{uuid.uuid4().hex}{ext}"


class SettlementMixin:
    """Shared status bookkeeping for rows that track ``paid_amount`` against a required value."""

    required_field = 'required_amount'

    @property
    def required_value(self) -> Decimal:
        return getattr(self, self.required_field) or Decimal('0')

    @property
    def outstanding(self) -> Decimal:
        return max(self.required_value - (self.paid_amount or Decimal('0')), Decimal('0'))

    def refresh_status(self, *, save: bool = True) -> str:
        new_status = settlement_status(self.paid_amount, self.required_value)
        if new_status != self.status:
            self.status = new_status
            if save:
                self.save(update_fields=['status', 'updated_at'])
        return new_status

    @classmethod
    def apply_payment_delta(cls, pk, delta: Decimal) -> int:
        """Shift ``paid_amount`` by ``delta`` and re-derive status from the stored total."""
        delta = Decimal(delta)
        with transaction.atomic():
            updated = cls.objects.filter(pk=pk).update(
                paid_amount=F('paid_amount') + delta, updated_at=timezone.now()
            )
            if not updated:
                return 0
            # SQLite does the addition in floating point; the read back is quantized to cents.
            row = cls.objects.select_for_update().get(pk=pk)
            row.status = settlement_status(row.paid_amount, row.required_value)
            row.save(update_fields=['paid_amount', 'status', 'updated_at'])
        return updated


class AbstractProjectCost(TimeStampedModel):
    total_cost = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    catalog = None
    stage_relation = ''

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"{self.project} · {self.total_cost}"

    def clean(self):
        super().clean()
        if self.total_cost is not None and self.total_cost < 0:
            raise ValidationError({'total_cost': 'Project cost must be zero or greater.'})

    @property
    def stages(self):
        return getattr(self.project, self.stage_relation)


class ProjectCost(AbstractProjectCost):
    project = models.OneToOneField(Project, on_delete=models.CASCADE, related_name='cost')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='project_costs_set'
    )

    catalog = CLIENT_STAGES
    stage_relation = 'payment_stages'


class VendorCost(AbstractProjectCost):
    project = models.OneToOneField(Project, on_delete=models.CASCADE, related_name='vendor_cost')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='vendor_costs_set'
    )

    catalog = VENDOR_STAGES
    stage_relation = 'vendor_payment_stages'


class AbstractPaymentStage(SettlementMixin, TimeStampedModel):
    position = models.PositiveSmallIntegerField(default=0)
    percentage = models.PositiveSmallIntegerField()
    required_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = models.CharField(max_length=16, choices=SettlementStatus.choices, default=SettlementStatus.PENDING)

    catalog = None

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"{self.project} · {self.stage_label}"

    @property
    def stage_label(self) -> str:
        if self.stage in self.catalog:
            return self.catalog.label(self.stage)
        return self.stage


class PaymentStage(AbstractPaymentStage):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='payment_stages')
    stage = models.CharField(max_length=32, choices=CLIENT_STAGES.choices)

    catalog = CLIENT_STAGES

    class Meta:
        ordering = ['project', 'position']
        constraints = [
            models.UniqueConstraint(fields=['project', 'stage'], name='unique_payment_stage_per_project'),
        ]


class VendorPaymentStage(AbstractPaymentStage):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='vendor_payment_stages')
    stage = models.CharField(max_length=32, choices=VENDOR_STAGES.choices)

    catalog = VENDOR_STAGES

    class Meta:
        ordering = ['project', 'position']
        constraints = [
            models.UniqueConstraint(fields=['project', 'stage'], name='unique_vendor_payment_stage_per_project'),
        ]


class AbstractLedgerPayment(TimeStampedModel):
    """A single payment entry. Entries are never edited, only deleted (reversed)."""

    amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_date = models.DateField()
    payment_method = models.CharField(max_length=50, blank=True)
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    proof = models.FileField(upload_to=proof_upload_to, max_length=255, blank=True)

    # Name of the foreign key pointing at the row whose paid_amount this entry moves.
    ledger_field = ''

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"Payment {self.amount} on {self.payment_date}"

    def clean(self):
        super().clean()
        if self.amount is not None and self.amount <= 0:
            raise ValidationError({'amount': 'Amount must be greater than zero.'})

    @property
    def ledger_row_id(self):
        return getattr(self, f'{self.ledger_field}_id')

    @classmethod
    def ledger_model(cls):
        return cls._meta.get_field(cls.ledger_field).related_model


class AbstractStagePayment(AbstractLedgerPayment):
    ledger_field = 'stage'

    class Meta:
        abstract = True

    @property
    def proof_project_id(self):
        return self.project_id or self.stage.project_id

    def clean(self):
        super().clean()
        if self.stage_id and self.project_id and self.stage.project_id != self.project_id:
            raise ValidationError('Payment stage must belong to the same project.')

    def save(self, *args, **kwargs):
        if self.stage_id and not self.project_id:
            self.project_id = self.stage.project_id
        super().save(*args, **kwargs)


class PaymentTransaction(AbstractStagePayment):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='payment_transactions')
    stage = models.ForeignKey(PaymentStage, on_delete=models.CASCADE, related_name='transactions')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payment_transactions_recorded',
    )

    class Meta:
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['payment_date'], name='ledger_paytx_date_idx'),
            models.Index(fields=['stage', 'payment_date'], name='ledger_paytx_stage_date_idx'),
        ]


class VendorPaymentTransaction(AbstractStagePayment):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='vendor_payment_transactions')
    stage = models.ForeignKey(VendorPaymentStage, on_delete=models.CASCADE, related_name='transactions')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='vendor_payment_transactions_recorded',
    )

    class Meta:
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['payment_date'], name='ledger_vpaytx_date_idx'),
            models.Index(fields=['stage', 'payment_date'], name='ledger_vpaytx_stage_date_idx'),
        ]


class AbstractExtraWork(SettlementMixin, TimeStampedModel):
    """Out-of-scope work billed on its own, outside the stage schedule."""

    amount = models.DecimalField(max_digits=14, decimal_places=2)
    description = models.TextField()
    status = models.CharField(max_length=16, choices=SettlementStatus.choices, default=SettlementStatus.PENDING)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    required_field = 'amount'

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"{self.project} · {self.description[:40]}"

    def clean(self):
        super().clean()
        errors = {}
        if self.amount is not None and self.amount <= 0:
            errors['amount'] = 'Amount must be greater than zero.'
        if not (self.description or '').strip():
            errors['description'] = 'Describe the extra work.'
        if errors:
            raise ValidationError(errors)


class ExtraWork(AbstractExtraWork):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='extra_works')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='extra_works_created'
    )

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['project', 'status'], name='ledger_xwork_proj_status_idx'),
        ]


class VendorExtraWork(AbstractExtraWork):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='vendor_extra_works')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='vendor_extra_works_created',
    )

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['project', 'status'], name='ledger_vxwork_proj_status_idx'),
        ]


class AbstractExtraWorkPayment(AbstractLedgerPayment):
    ledger_field = 'extra_work'

    class Meta:
        abstract = True

    @property
    def proof_project_id(self):
        return self.extra_work.project_id


class ExtraWorkPayment(AbstractExtraWorkPayment):
    extra_work = models.ForeignKey(ExtraWork, on_delete=models.CASCADE, related_name='payments')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='extra_work_payments_recorded',
    )

    class Meta:
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['extra_work', 'payment_date'], name='ledger_xwpay_work_date_idx'),
        ]


class VendorExtraWorkPayment(AbstractExtraWorkPayment):
    extra_work = models.ForeignKey(VendorExtraWork, on_delete=models.CASCADE, related_name='payments')
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='vendor_extra_work_payments_recorded',
    )

    class Meta:
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['extra_work', 'payment_date'], name='ledger_vxwpay_work_date_idx'),
        ]


class RolePermission(TimeStampedModel):
    class Module(models.TextChoices):
        PROJECTS = 'projects', 'Projects'
        ACCOUNTS = 'accounts', 'Accounts'
        VENDOR_ACCOUNTS = 'vendor_accounts', 'Vendor Accounts'
        USERS = 'users', 'Users'

    role = models.CharField(max_length=32, choices=User.Roles.choices, unique=True)
    projects = models.BooleanField(default=False)
    accounts = models.BooleanField(default=False)
    vendor_accounts = models.BooleanField(default=False)
    users = models.BooleanField(default=False)

    def __str__(self) -> str:
        return f"{self.get_role_display()} permissions"


class StaffActivity(TimeStampedModel):
    """Append-only audit trail of ledger and project changes."""

    class Category(models.TextChoices):
        PROJECTS = 'projects', 'Projects'
        ACCOUNTS = 'accounts', 'Accounts'
        VENDOR_ACCOUNTS = 'vendor_accounts', 'Vendor Accounts'
        USERS = 'users', 'Users'
        SYSTEM = 'system', 'System'

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff_activity',
    )
    category = models.CharField(max_length=50, choices=Category.choices, default=Category.SYSTEM)
    message = models.CharField(max_length=500)
    related_url = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['created_at'], name='ledger_activity_created_idx'),
            models.Index(fields=['actor', 'created_at'], name='ledger_activity_actor_idx'),
            models.Index(fields=['category', 'created_at'], name='ledger_activity_cat_idx'),
        ]

    def __str__(self) -> str:
        actor = self.actor.get_full_name() if self.actor else 'System'
        return f"{actor}: {self.message}"
