from django.db.models.signals import post_delete, post_migrate, post_save, pre_delete
from django.dispatch import receiver

from .models import (
    ExtraWorkPayment,
    PaymentTransaction,
    ProjectCost,
    VendorCost,
    VendorExtraWorkPayment,
    VendorPaymentTransaction,
)
from .proofs import delete_proof_on_commit

LEDGER_PAYMENT_MODELS = (
    PaymentTransaction,
    VendorPaymentTransaction,
    ExtraWorkPayment,
    VendorExtraWorkPayment,
)


@receiver(post_migrate)
def create_default_role_permissions(sender, **kwargs):
    if sender.name != 'ledger':
        return
    from .permissions import ensure_role_permissions

    ensure_role_permissions()


@receiver(post_save, sender=ProjectCost)
@receiver(post_save, sender=VendorCost)
def rescale_stages_on_cost_change(sender, instance, **kwargs):
    """Every cost write rescales the stage requirements; paid amounts are left alone."""
    if kwargs.get('raw'):
        return
    from .finance_utils import sync_stage_requirements

    sync_stage_requirements(instance)


def apply_payment_on_create(sender, instance, created: bool, **kwargs):
    if kwargs.get('raw') or not created:
        return
    sender.ledger_model().apply_payment_delta(instance.ledger_row_id, instance.amount)


def lock_payment_before_delete(sender, instance, **kwargs):
    # Deletion runs inside an atomic block; a stale or already deleted instance is not debited.
    instance._ledger_row_present = sender.objects.select_for_update().filter(pk=instance.pk).exists()


def reverse_payment_on_delete(sender, instance, **kwargs):
    if not getattr(instance, '_ledger_row_present', False):
        return
    sender.ledger_model().apply_payment_delta(instance.ledger_row_id, -instance.amount)
    if instance.proof:
        delete_proof_on_commit(instance.proof.name)


for payment_model in LEDGER_PAYMENT_MODELS:
    post_save.connect(apply_payment_on_create, sender=payment_model, dispatch_uid=f'apply_{payment_model.__name__}')
    pre_delete.connect(lock_payment_before_delete, sender=payment_model, dispatch_uid=f'lock_{payment_model.__name__}')
    post_delete.connect(reverse_payment_on_delete, sender=payment_model, dispatch_uid=f'reverse_{payment_model.__name__}')
