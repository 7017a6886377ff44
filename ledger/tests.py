import os
import random
import shutil
import tempfile
import time
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from .allocation import COMPLETED, PARTIAL, PENDING, allocate, run_allocation, settlement_status
from .finance_utils import (
    add_extra_work,
    effective_totals,
    ledger_totals,
    project_payment_summary,
    record_extra_work_payment,
    record_stage_payment,
    reverse_extra_work_payment,
    reverse_stage_payment,
    set_project_cost,
    update_extra_work,
)
from .models import (
    ExtraWorkPayment,
    PaymentStage,
    PaymentTransaction,
    Project,
    ProjectCost,
    RolePermission,
    StaffActivity,
    VendorPaymentStage,
)
from .permissions import get_permissions_for_user
from .proofs import sign_proof_path, signed_proof_url
from .stages import CLIENT_STAGES, VENDOR_STAGES, StageCatalog, StageDefinition, required_amount

User = get_user_model()

PROOF_MEDIA_ROOT = tempfile.mkdtemp(prefix='ledger-proofs-')


def tearDownModule():
    shutil.rmtree(PROOF_MEDIA_ROOT, ignore_errors=True)


def row(required, paid):
    return SimpleNamespace(required_amount=Decimal(required), paid_amount=Decimal(paid))


def pdf_upload(name='receipt.pdf'):
    return SimpleUploadedFile(name, b'%PDF-1.4 payment proof', content_type='application/pdf')


def stored_proofs():
    root = os.path.join(PROOF_MEDIA_ROOT, 'payment-proofs')
    return [os.path.join(path, name) for path, _, files in os.walk(root) for name in files]


class LedgerFixtures:
    password = 'test-pass-123'

    def setUp(self):
        super().setUp()
        self.admin = User.objects.create_user(
            username='admin', email='admin@example.com', password=self.password, role=User.Roles.ADMIN
        )
        self.project = Project.objects.create(client_name='Meera Nair', location='Kochi', created_by=self.admin)

    def stage(self, key, project=None):
        return PaymentStage.objects.get(project=project or self.project, stage=key)

    def pay(self, key, amount, **details):
        return record_stage_payment(
            self.stage(key),
            amount=Decimal(amount),
            payment_date=timezone.localdate(),
            actor=self.admin,
            **details,
        )


class StageCatalogTests(SimpleTestCase):
    def test_builtin_catalogs_add_up_to_hundred(self):
        self.assertEqual(CLIENT_STAGES.total_percentage, 100)
        self.assertEqual(VENDOR_STAGES.total_percentage, 100)
        self.assertEqual(len(CLIENT_STAGES), 6)
        self.assertEqual([stage.key for stage in CLIENT_STAGES][0], 'booking')
        self.assertEqual(CLIENT_STAGES.position('fabric_stage'), 5)

    def test_catalog_rejects_bad_weights(self):
        with self.assertRaises(ImproperlyConfigured):
            StageCatalog('broken', [StageDefinition('a', 'A', 60), StageDefinition('b', 'B', 30)])

    def test_catalog_rejects_duplicate_keys(self):
        with self.assertRaises(ImproperlyConfigured):
            StageCatalog('broken', [StageDefinition('a', 'A', 50), StageDefinition('a', 'A again', 50)])

    def test_unknown_stage_key(self):
        self.assertNotIn('handover', CLIENT_STAGES)
        with self.assertRaises(KeyError):
            CLIENT_STAGES.position('handover')

    def test_required_amount_rounds_to_cents(self):
        self.assertEqual(required_amount(Decimal('1000000'), 5), Decimal('50000.00'))
        self.assertEqual(required_amount(Decimal('333.33'), 25), Decimal('83.33'))
        self.assertEqual(required_amount(Decimal('0.10'), 5), Decimal('0.01'))


class SettlementStatusTests(SimpleTestCase):
    def test_status_derivation(self):
        self.assertEqual(settlement_status(Decimal('0'), Decimal('100')), PENDING)
        self.assertEqual(settlement_status(Decimal('40'), Decimal('100')), PARTIAL)
        self.assertEqual(settlement_status(Decimal('100'), Decimal('100')), COMPLETED)
        self.assertEqual(settlement_status(Decimal('150'), Decimal('100')), COMPLETED)
        self.assertEqual(settlement_status(Decimal('0'), Decimal('0')), COMPLETED)


class CarryForwardAllocationTests(SimpleTestCase):
    def test_empty_list(self):
        result = run_allocation([])
        self.assertEqual(result.stages, [])
        self.assertEqual(result.unapplied_excess, Decimal('0'))
        self.assertEqual(allocate([]), [])

    def test_surplus_moves_to_next_stage_only(self):
        stages = allocate([row('100', '150'), row('100', '0'), row('100', '0')])
        self.assertEqual([s.effective_paid for s in stages], [Decimal('150'), Decimal('50'), Decimal('0')])
        self.assertEqual([s.effective_status for s in stages], [COMPLETED, PARTIAL, PENDING])
        self.assertEqual(stages[1].carried_in, Decimal('50'))
        self.assertEqual(stages[1].effective_balance, Decimal('50'))
        self.assertTrue(stages[1].has_carry_forward)
        self.assertFalse(stages[0].has_carry_forward)
        self.assertFalse(stages[2].has_carry_forward)

    def test_conservation(self):
        rows = [row('100', '150'), row('100', '0'), row('50', '80')]
        result = run_allocation(rows)
        total_paid = sum(r.paid_amount for r in rows)
        self.assertEqual(result.total_applied + result.unapplied_excess, total_paid)
        self.assertEqual(result.unapplied_excess, Decimal('30'))
        for stage in result.stages:
            self.assertGreaterEqual(stage.effective_paid, stage.paid_amount)
            self.assertLessEqual(stage.applied_amount, stage.required_amount)

    def test_paying_more_never_lowers_effective_paid(self):
        before = allocate([row('100', '50'), row('100', '0'), row('100', '0')])
        after = allocate([row('100', '250'), row('100', '0'), row('100', '0')])
        for old, new in zip(before, after):
            self.assertGreaterEqual(new.effective_paid, old.effective_paid)
        self.assertEqual([s.effective_paid for s in after], [Decimal('250'), Decimal('150'), Decimal('50')])

    def test_carry_forward_never_raises_next_stage_balance(self):
        rng = random.Random(1507)
        for case in range(60):
            rows = [
                row(Decimal(rng.randint(0, 50000)) / 100, Decimal(rng.randint(0, 80000)) / 100)
                for _ in range(rng.randint(2, 6))
            ]
            stages = allocate(rows)
            for index in range(1, len(rows)):
                without_carry = allocate(rows[index:])[0]
                raw_balance = max(rows[index].required_amount - rows[index].paid_amount, Decimal('0'))
                with self.subTest(case=case, stage=index):
                    self.assertEqual(without_carry.effective_balance, raw_balance)
                    self.assertLessEqual(stages[index].effective_balance, raw_balance)
                    if stages[index - 1].carried_out == 0:
                        self.assertEqual(stages[index].effective_balance, raw_balance)

    def test_no_backward_flow(self):
        before = allocate([row('100', '20'), row('100', '100'), row('100', '0')])
        after = allocate([row('100', '20'), row('100', '100'), row('100', '900')])
        self.assertEqual(
            [s.effective_paid for s in before[:2]],
            [s.effective_paid for s in after[:2]],
        )
        self.assertEqual(before[0].effective_status, PARTIAL)

    def test_zero_required_stage_passes_everything_on(self):
        stages = allocate([row('0', '40'), row('100', '0')])
        self.assertEqual(stages[0].effective_status, COMPLETED)
        self.assertEqual(stages[0].carried_out, Decimal('40'))
        self.assertEqual(stages[1].effective_paid, Decimal('40'))

    def test_surplus_after_last_stage_is_reported_not_applied(self):
        result = run_allocation([row('100', '100'), row('50', '70')])
        self.assertEqual(result.stages[-1].effective_status, COMPLETED)
        self.assertEqual(result.unapplied_excess, Decimal('20'))
        self.assertEqual(result.total_effective_balance, Decimal('0'))


class StageLedgerTests(LedgerFixtures, TestCase):
    def test_cost_creates_six_stages_in_order(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        stages = list(self.project.payment_stages.order_by('position'))
        self.assertEqual([s.stage for s in stages], [d.key for d in CLIENT_STAGES])
        self.assertEqual(
            [s.required_amount for s in stages],
            [Decimal('50000.00'), Decimal('250000.00'), Decimal('250000.00'),
             Decimal('300000.00'), Decimal('100000.00'), Decimal('50000.00')],
        )
        self.assertTrue(all(s.status == PENDING for s in stages))
        activity = StaffActivity.objects.get(actor=self.admin, category=StaffActivity.Category.ACCOUNTS)
        self.assertEqual(activity.related_url, f"/api/v1/projects/{self.project.pk}/")

    def test_cost_update_rescales_and_keeps_payments(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        self.pay('booking', '50000')
        self.assertEqual(self.stage('booking').status, COMPLETED)

        set_project_cost(self.project, Decimal('2000000'), actor=self.admin)
        booking = self.stage('booking')
        self.assertEqual(booking.required_amount, Decimal('100000.00'))
        self.assertEqual(booking.paid_amount, Decimal('50000.00'))
        self.assertEqual(booking.status, PARTIAL)
        self.assertEqual(PaymentStage.objects.filter(project=self.project).count(), 6)
        self.assertEqual(ProjectCost.objects.filter(project=self.project).count(), 1)
        self.assertEqual(PaymentTransaction.objects.filter(project=self.project).count(), 1)

    def test_negative_cost_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            set_project_cost(self.project, Decimal('-1'), actor=self.admin)
        self.assertIn('total_cost', ctx.exception.message_dict)
        self.assertFalse(ProjectCost.objects.filter(project=self.project).exists())
        self.assertFalse(PaymentStage.objects.filter(project=self.project).exists())

    def test_zero_cost_completes_every_stage(self):
        set_project_cost(self.project, Decimal('0'), actor=self.admin)
        self.assertEqual(set(self.project.payment_stages.values_list('status', flat=True)), {COMPLETED})

    def test_record_and_reverse_round_trip(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        first = self.pay('booking', '20000', payment_method='UPI', reference_number='UTR-1')
        self.assertEqual(self.stage('booking').status, PARTIAL)
        self.assertEqual(first.recorded_by, self.admin)
        self.assertEqual(first.project_id, self.project.pk)

        second = self.pay('booking', '30000')
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('50000.00'))
        self.assertEqual(booking.status, COMPLETED)

        reverse_stage_payment(second, actor=self.admin)
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('20000.00'))
        self.assertEqual(booking.status, PARTIAL)

        reverse_stage_payment(first, actor=self.admin)
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('0.00'))
        self.assertEqual(booking.status, PENDING)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_reversing_a_stale_copy_fails_without_debiting(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        payment = self.pay('booking', '20000')
        stale = PaymentTransaction.objects.get(pk=payment.pk)

        reverse_stage_payment(payment, actor=self.admin)
        with self.assertRaises(PaymentTransaction.DoesNotExist):
            reverse_stage_payment(stale, actor=self.admin)
        stale.delete()

        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('0.00'))
        self.assertEqual(booking.status, PENDING)

    def test_cent_payments_settle_stage_exactly(self):
        set_project_cost(self.project, Decimal('20'), actor=self.admin)
        self.assertEqual(self.stage('booking').required_amount, Decimal('1.00'))
        payments = [self.pay('booking', amount) for amount in ('0.70', '0.20', '0.10')]

        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('1.00'))
        self.assertEqual(booking.status, COMPLETED)

        reverse_stage_payment(payments[-1], actor=self.admin)
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('0.90'))
        self.assertEqual(booking.status, PARTIAL)
        for stage in self.project.payment_stages.all():
            self.assertEqual(stage.status, settlement_status(stage.paid_amount, stage.required_amount))

    def test_overpayment_is_accepted(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        self.pay('booking', '60000')
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('60000.00'))
        self.assertEqual(booking.status, COMPLETED)

    def test_non_positive_amounts_are_rejected_before_writing(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        for amount in ('0', '-500'):
            with self.assertRaises(ValidationError) as ctx:
                self.pay('booking', amount)
            self.assertIn('amount', ctx.exception.message_dict)
        self.assertFalse(PaymentTransaction.objects.exists())
        self.assertEqual(self.stage('booking').paid_amount, Decimal('0.00'))

    def test_missing_payment_date_is_rejected(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        with self.assertRaises(ValidationError) as ctx:
            record_stage_payment(self.stage('booking'), amount=Decimal('10'), payment_date=None, actor=self.admin)
        self.assertIn('payment_date', ctx.exception.message_dict)

    def test_increment_is_applied_in_the_database(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        stale = self.stage('booking')
        self.pay('booking', '10000')
        # A second writer holding the stale row still adds on top of the first.
        record_stage_payment(stale, amount=Decimal('15000'), payment_date=timezone.localdate(), actor=self.admin)
        self.assertEqual(self.stage('booking').paid_amount, Decimal('25000.00'))
        self.assertEqual(stale.paid_amount, Decimal('25000.00'))

    def test_vendor_ledger_is_independent(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        set_project_cost(self.project, Decimal('400000'), actor=self.admin, vendor=True)
        vendor_stage = VendorPaymentStage.objects.get(project=self.project, stage='material_unload')
        self.assertEqual(vendor_stage.required_amount, Decimal('80000.00'))

        record_stage_payment(vendor_stage, amount=Decimal('80000'), payment_date=timezone.localdate(), actor=self.admin)
        vendor_stage.refresh_from_db()
        self.assertEqual(vendor_stage.status, COMPLETED)
        self.assertEqual(ledger_totals(vendor=False)['total_received'], Decimal('0'))
        self.assertEqual(ledger_totals(vendor=True)['total_received'], Decimal('80000.00'))
        self.assertTrue(
            StaffActivity.objects.filter(category=StaffActivity.Category.VENDOR_ACCOUNTS).exists()
        )


class WorkedExampleTests(LedgerFixtures, TestCase):
    def setUp(self):
        super().setUp()
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)

    def test_booking_overpayment_carries_into_pop_stage(self):
        self.pay('booking', '80000')
        summary = project_payment_summary(self.project)
        stages = summary.allocation.stages

        booking, pop = stages[0], stages[1]
        self.assertEqual(booking.paid_amount, Decimal('80000.00'))
        self.assertEqual(booking.effective_paid, Decimal('80000.00'))
        self.assertEqual(booking.effective_status, COMPLETED)
        self.assertEqual(booking.carried_out, Decimal('30000.00'))

        self.assertEqual(pop.paid_amount, Decimal('0.00'))
        self.assertEqual(pop.effective_paid, Decimal('30000.00'))
        self.assertEqual(pop.effective_balance, Decimal('220000.00'))
        self.assertEqual(pop.effective_status, PARTIAL)
        self.assertTrue(pop.has_carry_forward)

        for later in stages[2:]:
            self.assertEqual(later.effective_paid, Decimal('0'))
            self.assertEqual(later.effective_status, PENDING)

        # Stored rows are untouched by the allocation.
        self.assertEqual(self.stage('pop_stage').paid_amount, Decimal('0.00'))
        self.assertEqual(self.stage('pop_stage').status, PENDING)

    def test_reversal_clears_carry_forward_on_next_read(self):
        payment = self.pay('booking', '80000')
        reverse_stage_payment(payment, actor=self.admin)

        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('0.00'))
        self.assertEqual(booking.status, PENDING)

        pop = project_payment_summary(self.project).allocation.stages[1]
        self.assertEqual(pop.effective_paid, Decimal('0'))
        self.assertEqual(pop.effective_status, PENDING)

    def test_summary_totals(self):
        self.pay('booking', '80000')
        summary = project_payment_summary(self.project)
        self.assertTrue(summary.has_cost)
        self.assertEqual(summary.total_cost, Decimal('1000000.00'))
        self.assertEqual(summary.total_paid, Decimal('80000.00'))
        self.assertEqual(summary.total_pending, Decimal('920000.00'))
        self.assertEqual(summary.allocation.unapplied_excess, Decimal('0'))


class ExtraWorkTests(LedgerFixtures, TestCase):
    def test_extra_work_lifecycle(self):
        work = add_extra_work(self.project, amount=Decimal('10000'), description='Extra wardrobe', actor=self.admin)
        self.assertEqual(work.status, PENDING)
        self.assertEqual(work.paid_amount, Decimal('0'))

        payment = record_extra_work_payment(
            work, amount=Decimal('4000'), payment_date=timezone.localdate(), actor=self.admin
        )
        self.assertEqual(work.paid_amount, Decimal('4000.00'))
        self.assertEqual(work.status, PARTIAL)

        work = update_extra_work(work, actor=self.admin, amount=Decimal('4000'))
        self.assertEqual(work.status, COMPLETED)

        reverse_extra_work_payment(payment, actor=self.admin)
        work.refresh_from_db()
        self.assertEqual(work.paid_amount, Decimal('0.00'))
        self.assertEqual(work.status, PENDING)

    def test_reversing_a_stale_extra_work_payment_fails_without_debiting(self):
        work = add_extra_work(self.project, amount=Decimal('10000'), description='Extra wardrobe', actor=self.admin)
        payment = record_extra_work_payment(
            work, amount=Decimal('4000'), payment_date=timezone.localdate(), actor=self.admin
        )
        stale = ExtraWorkPayment.objects.get(pk=payment.pk)

        reverse_extra_work_payment(payment, actor=self.admin)
        with self.assertRaises(ExtraWorkPayment.DoesNotExist):
            reverse_extra_work_payment(stale, actor=self.admin)

        work.refresh_from_db()
        self.assertEqual(work.paid_amount, Decimal('0.00'))
        self.assertEqual(work.status, PENDING)

    def test_extra_work_validation(self):
        with self.assertRaises(ValidationError):
            add_extra_work(self.project, amount=Decimal('0'), description='Nothing', actor=self.admin)
        with self.assertRaises(ValidationError) as ctx:
            add_extra_work(self.project, amount=Decimal('100'), description='   ', actor=self.admin)
        self.assertIn('description', ctx.exception.message_dict)
        self.assertFalse(self.project.extra_works.exists())

    def test_extra_work_has_no_carry_forward(self):
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        first = add_extra_work(self.project, amount=Decimal('1000'), description='Shelf', actor=self.admin)
        second = add_extra_work(self.project, amount=Decimal('1000'), description='Mirror', actor=self.admin)
        record_extra_work_payment(first, amount=Decimal('1500'), payment_date=timezone.localdate(), actor=self.admin)
        second.refresh_from_db()
        self.assertEqual(second.paid_amount, Decimal('0.00'))
        self.assertEqual(second.status, PENDING)
        booking = project_payment_summary(self.project).allocation.stages[0]
        self.assertEqual(booking.effective_paid, Decimal('0'))


class AggregateTotalsTests(LedgerFixtures, TestCase):
    def setUp(self):
        super().setUp()
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        self.pay('booking', '80000')
        work = add_extra_work(self.project, amount=Decimal('10000'), description='False ceiling', actor=self.admin)
        record_extra_work_payment(work, amount=Decimal('4000'), payment_date=timezone.localdate(), actor=self.admin)

    def test_ledger_totals_use_raw_values(self):
        totals = ledger_totals()
        self.assertEqual(totals['total_received'], Decimal('84000.00'))
        self.assertEqual(totals['total_pending'], Decimal('926000.00'))
        self.assertEqual(totals['extra_work_total'], Decimal('10000.00'))

    def test_effective_totals_follow_carry_forward(self):
        totals = effective_totals()
        self.assertEqual(totals['total_applied'], Decimal('84000.00'))
        self.assertEqual(totals['total_pending'], Decimal('926000.00'))
        self.assertEqual(totals['unapplied_excess'], Decimal('0'))

    def test_totals_disagree_once_the_last_stage_is_overpaid(self):
        self.pay('fabric_stage', '60000')
        raw = ledger_totals()
        effective = effective_totals()
        # Raw pending nets the fabric surplus against earlier stages; the effective view does not.
        self.assertEqual(raw['total_pending'], Decimal('866000.00'))
        self.assertEqual(effective['total_pending'], Decimal('876000.00'))
        self.assertEqual(effective['unapplied_excess'], Decimal('10000.00'))
        self.assertEqual(effective['total_applied'] + effective['unapplied_excess'], raw['total_received'])

    def test_overpaid_extra_work_does_not_hide_another_items_balance(self):
        shelf = add_extra_work(self.project, amount=Decimal('1000'), description='Shelf', actor=self.admin)
        add_extra_work(self.project, amount=Decimal('1000'), description='Mirror', actor=self.admin)
        record_extra_work_payment(shelf, amount=Decimal('1500'), payment_date=timezone.localdate(), actor=self.admin)
        # 920000 on the stages, 6000 on the ceiling and the unpaid mirror.
        self.assertEqual(effective_totals()['total_pending'], Decimal('927000.00'))

    def test_totals_can_be_scoped_to_projects(self):
        other = Project.objects.create(client_name='Other client')
        set_project_cost(other, Decimal('500000'), actor=self.admin)
        self.assertEqual(ledger_totals([other])['total_received'], Decimal('0'))
        self.assertEqual(effective_totals([other])['total_pending'], Decimal('500000.00'))
        self.assertEqual(effective_totals(Project.objects.filter(pk=self.project.pk))['total_applied'], Decimal('84000.00'))


@override_settings(MEDIA_ROOT=PROOF_MEDIA_ROOT)
class ProofFileTests(LedgerFixtures, TestCase):
    def setUp(self):
        super().setUp()
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)

    def test_proof_is_stored_under_project_prefix(self):
        payment = self.pay('booking', '10000', proof=pdf_upload())
        self.assertTrue(payment.proof.name.startswith(f'payment-proofs/{self.project.pk}/'))
        self.assertTrue(payment.proof.name.endswith('.pdf'))
        self.assertTrue(default_storage.exists(payment.proof.name))

    def test_reversal_removes_proof_after_commit(self):
        payment = self.pay('booking', '10000', proof=pdf_upload())
        name = payment.proof.name
        with self.captureOnCommitCallbacks(execute=True):
            reverse_stage_payment(payment, actor=self.admin)
        self.assertFalse(default_storage.exists(name))

    def test_failed_insert_removes_uploaded_proof(self):
        before = len(stored_proofs())
        with mock.patch.object(PaymentStage, 'apply_payment_delta', side_effect=DatabaseError('write failed')):
            with self.assertRaises(DatabaseError):
                self.pay('booking', '10000', proof=pdf_upload())
        self.assertEqual(len(stored_proofs()), before)
        self.assertFalse(PaymentTransaction.objects.exists())
        self.assertEqual(self.stage('booking').paid_amount, Decimal('0.00'))

    def test_unsupported_proof_type_is_rejected(self):
        upload = SimpleUploadedFile('notes.txt', b'hello', content_type='text/plain')
        with self.assertRaises(ValidationError) as ctx:
            self.pay('booking', '10000', proof=upload)
        self.assertIn('proof', ctx.exception.message_dict)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_signed_link_serves_file(self):
        payment = self.pay('booking', '10000', proof=pdf_upload())
        resp = self.client.get(signed_proof_url(payment.proof.name))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(b''.join(resp.streaming_content), b'%PDF-1.4 payment proof')
        resp.close()

    def test_tampered_link_is_not_found(self):
        payment = self.pay('booking', '10000', proof=pdf_upload())
        token = sign_proof_path(payment.proof.name)
        resp = self.client.get(reverse('proof_download', args=[token[:-2] + 'xx']))
        self.assertEqual(resp.status_code, 404)

    @override_settings(PROOF_URL_TTL_SECONDS=60)
    def test_expired_link_is_gone(self):
        payment = self.pay('booking', '10000', proof=pdf_upload())
        with mock.patch('django.core.signing.time.time', return_value=time.time() - 3600):
            token = sign_proof_path(payment.proof.name)
        resp = self.client.get(reverse('proof_download', args=[token]))
        self.assertEqual(resp.status_code, 410)


class RebuildLedgerCommandTests(LedgerFixtures, TestCase):
    def setUp(self):
        super().setUp()
        set_project_cost(self.project, Decimal('1000000'), actor=self.admin)
        self.pay('booking', '80000')
        PaymentStage.objects.filter(project=self.project, stage='booking').update(
            paid_amount=Decimal('0'), status=PENDING
        )

    def test_dry_run_leaves_rows_alone(self):
        out = StringIO()
        call_command('rebuild_payment_ledgers', '--dry-run', '--side', 'client', stdout=out)
        self.assertIn('1 row(s) would be rebuilt', out.getvalue())
        self.assertEqual(self.stage('booking').paid_amount, Decimal('0.00'))

    def test_rebuild_restores_paid_amounts(self):
        out = StringIO()
        call_command('rebuild_payment_ledgers', stdout=out)
        self.assertIn('Rebuilt 1 ledger row(s).', out.getvalue())
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('80000.00'))
        self.assertEqual(booking.status, COMPLETED)


class RolePermissionTests(TestCase):
    def test_account_manager_sees_both_ledgers(self):
        user = User.objects.create_user(username='acc', password='x', role=User.Roles.ACCOUNT_MANAGER)
        perms = get_permissions_for_user(user)
        self.assertTrue(perms['accounts'])
        self.assertTrue(perms['vendor_accounts'])
        self.assertFalse(perms['users'])

    def test_client_never_sees_accounts(self):
        user = User.objects.create_user(username='client', password='x', role=User.Roles.CLIENT)
        RolePermission.objects.update_or_create(role=User.Roles.CLIENT, defaults={'accounts': True})
        self.assertFalse(get_permissions_for_user(user)['accounts'])

    def test_designer_defaults_to_projects_only(self):
        user = User.objects.create_user(username='designer', password='x', role=User.Roles.DESIGNER)
        perms = get_permissions_for_user(user)
        self.assertTrue(perms['projects'])
        self.assertFalse(perms['accounts'])


@override_settings(MEDIA_ROOT=PROOF_MEDIA_ROOT)
class LedgerApiTests(LedgerFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.accountant = User.objects.create_user(
            username='accounts', email='accounts@example.com', password=self.password,
            role=User.Roles.ACCOUNT_MANAGER,
        )
        self.designer = User.objects.create_user(
            username='designer', password=self.password, role=User.Roles.DESIGNER
        )
        self.project.members.add(self.designer)
        self.api = APIClient()

    def login(self, user):
        self.api.force_authenticate(user=user)

    def set_cost(self, amount='1000000'):
        return self.api.post(
            reverse('project-cost', args=[self.project.pk]), {'total_cost': amount}, format='json'
        )

    def test_jwt_login_accepts_email(self):
        resp = self.api.post(
            reverse('token_obtain_pair'),
            {'username': 'accounts@example.com', 'password': self.password},
            format='json',
        )
        self.assertEqual(resp.status_code, 200)
        self.assertIn('access', resp.data)

    def test_me_reports_module_permissions(self):
        self.login(self.accountant)
        resp = self.api.get(reverse('me'))
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data['permissions']['accounts'])
        self.assertEqual(resp.data['user']['role'], User.Roles.ACCOUNT_MANAGER)

    def test_only_admin_sets_client_cost(self):
        self.login(self.accountant)
        resp = self.set_cost()
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data['detail'], 'Only Admin can do this.')

        self.login(self.admin)
        resp = self.set_cost()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['total_cost'], '1000000.00')
        self.assertEqual(self.project.payment_stages.count(), 6)

    def test_negative_cost_returns_400(self):
        self.login(self.admin)
        resp = self.set_cost('-10')
        self.assertEqual(resp.status_code, 400)
        self.assertIn('total_cost', resp.data)

    def test_designer_cannot_reach_accounts(self):
        self.login(self.admin)
        self.set_cost()
        self.login(self.designer)
        self.assertEqual(self.api.get(reverse('payment-stage-list')).status_code, 403)
        self.assertEqual(self.api.get(reverse('project-payments', args=[self.project.pk])).status_code, 403)
        self.assertEqual(self.api.get(reverse('project-detail', args=[self.project.pk])).status_code, 200)

    def test_record_payment_and_read_carry_forward(self):
        self.login(self.admin)
        self.set_cost()
        booking = self.stage('booking')

        self.login(self.accountant)
        resp = self.api.post(
            reverse('payment-stage-payments', args=[booking.pk]),
            {'amount': '80000.00', 'payment_date': str(timezone.localdate()), 'payment_method': 'Bank transfer'},
            format='json',
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data['recorded_by'], self.accountant.pk)
        self.assertIsNone(resp.data['proof_url'])

        resp = self.api.get(reverse('project-payments', args=[self.project.pk]))
        self.assertEqual(resp.status_code, 200)
        stages = resp.data['stages']
        self.assertEqual(stages[0]['stage'], 'booking')
        self.assertEqual(stages[0]['effective_status'], COMPLETED)
        self.assertEqual(stages[1]['paid_amount'], '0.00')
        self.assertEqual(stages[1]['effective_paid'], '30000.00')
        self.assertEqual(stages[1]['effective_balance'], '220000.00')
        self.assertEqual(stages[1]['effective_status'], PARTIAL)
        self.assertTrue(stages[1]['has_carry_forward'])
        self.assertEqual(stages[2]['effective_status'], PENDING)
        self.assertEqual(resp.data['unapplied_excess'], '0.00')

        history = self.api.get(reverse('payment-stage-payments', args=[booking.pk]))
        self.assertEqual(len(history.data), 1)

    def test_zero_amount_returns_400(self):
        self.login(self.admin)
        self.set_cost()
        resp = self.api.post(
            reverse('payment-stage-payments', args=[self.stage('booking').pk]),
            {'amount': '0', 'payment_date': str(timezone.localdate())},
            format='json',
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn('amount', resp.data)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_unknown_stage_returns_404(self):
        self.login(self.admin)
        resp = self.api.post(
            reverse('payment-stage-payments', args=[999999]),
            {'amount': '10', 'payment_date': str(timezone.localdate())},
            format='json',
        )
        self.assertEqual(resp.status_code, 404)

    def test_transaction_create_and_reverse(self):
        self.login(self.admin)
        self.set_cost()
        booking = self.stage('booking')
        resp = self.api.post(
            reverse('payment-transaction-list'),
            {'stage': booking.pk, 'amount': '50000', 'payment_date': str(timezone.localdate())},
            format='json',
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(self.stage('booking').status, COMPLETED)

        resp = self.api.delete(reverse('payment-transaction-detail', args=[resp.data['id']]))
        self.assertEqual(resp.status_code, 204)
        booking = self.stage('booking')
        self.assertEqual(booking.paid_amount, Decimal('0.00'))
        self.assertEqual(booking.status, PENDING)

    def test_transactions_cannot_be_edited(self):
        self.login(self.admin)
        self.set_cost()
        payment = self.pay('booking', '1000')
        resp = self.api.patch(
            reverse('payment-transaction-detail', args=[payment.pk]), {'amount': '5'}, format='json'
        )
        self.assertEqual(resp.status_code, 405)

    def test_upload_proof_and_fetch_signed_url(self):
        self.login(self.admin)
        self.set_cost()
        resp = self.api.post(
            reverse('payment-stage-payments', args=[self.stage('booking').pk]),
            {'amount': '10000', 'payment_date': str(timezone.localdate()), 'proof': pdf_upload()},
            format='multipart',
        )
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(resp.data['has_proof'])

        link = self.api.get(reverse('payment-transaction-proof', args=[resp.data['id']]))
        self.assertEqual(link.status_code, 200)
        self.assertEqual(link.data['expires_in'], 3600)

        download = APIClient().get(link.data['url'])
        self.assertEqual(download.status_code, 200)
        download.close()

    def test_extra_work_api(self):
        self.login(self.admin)
        resp = self.api.post(
            reverse('extra-work-list'),
            {'project': self.project.pk, 'amount': '5000.00', 'description': 'Pooja unit'},
            format='json',
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.data['status'], PENDING)
        work_id = resp.data['id']

        self.login(self.accountant)
        resp = self.api.post(
            reverse('extra-work-payments', args=[work_id]),
            {'amount': '2000.00', 'payment_date': str(timezone.localdate())},
            format='json',
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(self.api.get(reverse('extra-work-detail', args=[work_id])).data['status'], PARTIAL)

        # Client-side scope changes stay with admins.
        resp = self.api.patch(reverse('extra-work-detail', args=[work_id]), {'amount': '2000.00'}, format='json')
        self.assertEqual(resp.status_code, 403)

        self.login(self.admin)
        resp = self.api.patch(reverse('extra-work-detail', args=[work_id]), {'amount': '2000.00'}, format='json')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['status'], COMPLETED)

    def test_accounts_summary_exposes_both_views(self):
        self.login(self.admin)
        self.set_cost()
        self.pay('booking', '80000')
        Project.objects.create(client_name='No cost yet')

        self.login(self.accountant)
        resp = self.api.get(reverse('accounts_summary'))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data['ledger']['total_received'], Decimal('80000.00'))
        self.assertEqual(resp.data['effective']['total_applied'], Decimal('80000.00'))
        self.assertEqual(len(resp.data['projects']), 1)
        self.assertEqual(len(resp.data['projects_without_cost']), 1)

        self.assertEqual(self.api.get(reverse('accounts_summary'), {'side': 'other'}).status_code, 400)
