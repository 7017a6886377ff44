from __future__ import annotations

from contextlib import contextmanager

from django.core import signing
from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.core.files.storage import default_storage
from django.http import FileResponse, Http404, HttpResponse
from rest_framework import mixins, serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from ledger.activity import log_staff_activity
from ledger.api.access import visible_project_rows, visible_projects_for_user
from ledger.api.permissions import ModulePermission, RolePermission
from ledger.api.serializers import (
    CostInputSerializer,
    ExtraWorkPaymentSerializer,
    ExtraWorkSerializer,
    PaymentInputSerializer,
    PaymentStageSerializer,
    PaymentTransactionSerializer,
    ProjectCostSerializer,
    ProjectPaymentSummarySerializer,
    ProjectSerializer,
    RolePermissionSerializer,
    StagePaymentCreateSerializer,
    StaffActivitySerializer,
    UserSerializer,
    VendorCostSerializer,
    VendorExtraWorkPaymentSerializer,
    VendorExtraWorkSerializer,
    VendorPaymentStageSerializer,
    VendorPaymentTransactionSerializer,
)
from ledger.finance_utils import (
    add_extra_work,
    effective_totals,
    ledger_side,
    ledger_totals,
    project_payment_summary,
    record_extra_work_payment,
    record_stage_payment,
    reverse_extra_work_payment,
    reverse_stage_payment,
    set_project_cost,
    update_extra_work,
)
from ledger.models import Project, RolePermission as RolePermissionModel, StaffActivity, User
from ledger.permissions import CLIENT_SCOPE_ROLES, LEDGER_ROLES, get_permissions_for_user
from ledger.proofs import proof_url_ttl, signed_proof_url, unsign_proof_path


@contextmanager
def ledger_errors():
    """Surface model/ledger validation failures as HTTP 400 and vanished rows as 404."""
    try:
        yield
    except DjangoValidationError as exc:
        if hasattr(exc, 'message_dict'):
            raise serializers.ValidationError(exc.message_dict) from exc
        raise serializers.ValidationError({'detail': exc.messages}) from exc
    except ObjectDoesNotExist as exc:
        raise Http404(str(exc)) from exc


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        username = attrs.get(self.username_field)
        if username and '@' in username:
            user = User.objects.filter(email__iexact=username).first()
            if user:
                attrs[self.username_field] = user.get_username()
        return super().validate(attrs)


class CustomTokenObtainPairView(TokenObtainPairView):
    permission_classes = (AllowAny,)
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshView(TokenRefreshView):
    permission_classes = (AllowAny,)


class MeView(APIView):
    def get(self, request):
        perms = get_permissions_for_user(request.user)
        return Response({
            'user': UserSerializer(request.user).data,
            'permissions': perms,
        })


class BaseModelViewSet(viewsets.ModelViewSet):
    permission_classes = (ModulePermission, RolePermission)
    module_permission: str | None = None
    module_map: dict[str, str] | None = None
    role_map: dict[str, tuple[str, ...] | None] | None = None

    def get_permissions(self):
        if self.module_map and self.action in self.module_map:
            self.module_permission = self.module_map[self.action]
        if self.role_map:
            roles = self.role_map.get(self.action)
            self.allowed_roles = roles
        return super().get_permissions()


def _payment_details(data) -> dict:
    return {
        'amount': data['amount'],
        'payment_date': data['payment_date'],
        'payment_method': data.get('payment_method', ''),
        'reference_number': data.get('reference_number', ''),
        'notes': data.get('notes', ''),
        'proof': data.get('proof'),
    }


class ProjectViewSet(BaseModelViewSet):
    serializer_class = ProjectSerializer
    module_permission = 'projects'
    search_fields = ('client_name', 'client_email', 'location')
    ordering_fields = ('client_name', 'created_at', 'updated_at', 'deadline')
    filterset_fields = ('status', 'client_user')
    module_map = {
        'payments': 'accounts',
        'cost': 'accounts',
        'vendor_payments': 'vendor_accounts',
        'vendor_cost': 'vendor_accounts',
    }
    role_map = {
        'create': (User.Roles.ADMIN,),
        'update': (User.Roles.ADMIN,),
        'partial_update': (User.Roles.ADMIN,),
        'destroy': (User.Roles.ADMIN,),
        'cost': CLIENT_SCOPE_ROLES,
        'vendor_cost': LEDGER_ROLES,
    }

    def get_queryset(self):
        qs = Project.objects.select_related('client_user', 'created_by').prefetch_related('members')
        return visible_projects_for_user(self.request.user, qs)

    def perform_create(self, serializer):
        project = serializer.save(created_by=self.request.user)
        log_staff_activity(
            actor=self.request.user,
            category=StaffActivity.Category.PROJECTS,
            message=f"Created project {project}.",
            project_id=project.pk,
        )

    def _summary_response(self, vendor: bool):
        project = self.get_object()
        summary = project_payment_summary(project, vendor=vendor)
        serializer = ProjectPaymentSummarySerializer(
            summary, context={'request': self.request, 'vendor': vendor}
        )
        return Response(serializer.data)

    def _set_cost(self, request, vendor: bool):
        project = self.get_object()
        payload = CostInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        with ledger_errors():
            cost = set_project_cost(
                project, payload.validated_data['total_cost'], actor=request.user, vendor=vendor
            )
        serializer_class = VendorCostSerializer if vendor else ProjectCostSerializer
        return Response(serializer_class(cost).data)

    @action(detail=True, methods=['get'])
    def payments(self, request, pk=None):
        return self._summary_response(vendor=False)

    @action(detail=True, methods=['get'])
    def vendor_payments(self, request, pk=None):
        return self._summary_response(vendor=True)

    @action(detail=True, methods=['post'])
    def cost(self, request, pk=None):
        return self._set_cost(request, vendor=False)

    @action(detail=True, methods=['post'])
    def vendor_cost(self, request, pk=None):
        return self._set_cost(request, vendor=True)


class LedgerViewMixin:
    """Binds a viewset to the client or vendor side of the books."""

    vendor = False

    @property
    def side(self):
        return ledger_side(self.vendor)

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['vendor'] = self.vendor
        return context


class PaymentStageViewSet(LedgerViewMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = PaymentStageSerializer
    permission_classes = (ModulePermission, RolePermission)
    module_permission = 'accounts'
    filterset_fields = ('project', 'stage', 'status')
    ordering_fields = ('position', 'updated_at')

    def get_permissions(self):
        self.allowed_roles = LEDGER_ROLES if self.request.method == 'POST' else None
        return super().get_permissions()

    def get_queryset(self):
        qs = self.side.stage_model.objects.select_related('project')
        return visible_project_rows(self.request.user, qs)

    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        stage = self.get_object()
        history_serializer = (
            VendorPaymentTransactionSerializer if self.vendor else PaymentTransactionSerializer
        )
        if request.method == 'GET':
            entries = stage.transactions.select_related('stage', 'recorded_by')
            return Response(history_serializer(entries, many=True, context={'request': request}).data)

        payload = PaymentInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        with ledger_errors():
            payment = record_stage_payment(
                stage, actor=request.user, **_payment_details(payload.validated_data)
            )
        return Response(
            history_serializer(payment, context={'request': request}).data,
            status=status.HTTP_201_CREATED,
        )


class VendorPaymentStageViewSet(PaymentStageViewSet):
    serializer_class = VendorPaymentStageSerializer
    module_permission = 'vendor_accounts'
    vendor = True


class ProofActionMixin:
    @action(detail=True, methods=['get'])
    def proof(self, request, pk=None):
        payment = self.get_object()
        if not payment.proof:
            raise Http404('No proof uploaded for this payment.')
        return Response({
            'url': signed_proof_url(payment.proof.name, request),
            'expires_in': proof_url_ttl(),
        })


class PaymentTransactionViewSet(
    LedgerViewMixin,
    ProofActionMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.ReadOnlyModelViewSet,
):
    serializer_class = PaymentTransactionSerializer
    permission_classes = (ModulePermission, RolePermission)
    module_permission = 'accounts'
    filterset_fields = ('project', 'stage', 'payment_date')
    ordering_fields = ('payment_date', 'amount', 'created_at')
    search_fields = ('reference_number', 'notes')
    role_map = {
        'create': LEDGER_ROLES,
        'destroy': LEDGER_ROLES,
    }

    def get_permissions(self):
        self.allowed_roles = self.role_map.get(self.action)
        return super().get_permissions()

    def get_queryset(self):
        qs = self.side.payment_model.objects.select_related('project', 'stage', 'recorded_by')
        return visible_project_rows(self.request.user, qs)

    def create(self, request, *args, **kwargs):
        stages = visible_project_rows(request.user, self.side.stage_model.objects.all())
        payload = StagePaymentCreateSerializer(data=request.data, stage_queryset=stages)
        payload.is_valid(raise_exception=True)
        with ledger_errors():
            payment = record_stage_payment(
                payload.validated_data['stage'],
                actor=request.user,
                **_payment_details(payload.validated_data),
            )
        serializer = self.get_serializer(payment)
        return Response(serializer.data, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        with ledger_errors():
            reverse_stage_payment(instance, actor=self.request.user)


class VendorPaymentTransactionViewSet(PaymentTransactionViewSet):
    serializer_class = VendorPaymentTransactionSerializer
    module_permission = 'vendor_accounts'
    vendor = True


class ExtraWorkViewSet(
    LedgerViewMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.ReadOnlyModelViewSet,
):
    serializer_class = ExtraWorkSerializer
    permission_classes = (ModulePermission, RolePermission)
    module_permission = 'accounts'
    filterset_fields = ('project', 'status')
    ordering_fields = ('created_at', 'amount')
    search_fields = ('description',)
    scope_roles = CLIENT_SCOPE_ROLES

    def get_permissions(self):
        if self.action in ('create', 'update', 'partial_update'):
            self.allowed_roles = self.scope_roles
        elif self.action == 'payments' and self.request.method == 'POST':
            self.allowed_roles = LEDGER_ROLES
        else:
            self.allowed_roles = None
        return super().get_permissions()

    def get_queryset(self):
        qs = self.side.extra_work_model.objects.select_related('project', 'created_by')
        return visible_project_rows(self.request.user, qs)

    def perform_create(self, serializer):
        project = serializer.validated_data['project']
        if not visible_projects_for_user(self.request.user).filter(pk=project.pk).exists():
            raise serializers.ValidationError({'project': 'Unknown project.'})
        with ledger_errors():
            serializer.instance = add_extra_work(
                project,
                amount=serializer.validated_data['amount'],
                description=serializer.validated_data['description'],
                actor=self.request.user,
                vendor=self.vendor,
            )

    def perform_update(self, serializer):
        data = serializer.validated_data
        if 'project' in data and data['project'].pk != serializer.instance.project_id:
            raise serializers.ValidationError({'project': 'Extra work cannot move between projects.'})
        with ledger_errors():
            serializer.instance = update_extra_work(
                serializer.instance,
                actor=self.request.user,
                amount=data.get('amount'),
                description=data.get('description'),
            )

    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        work = self.get_object()
        history_serializer = (
            VendorExtraWorkPaymentSerializer if self.vendor else ExtraWorkPaymentSerializer
        )
        if request.method == 'GET':
            entries = work.payments.select_related('recorded_by')
            return Response(history_serializer(entries, many=True, context={'request': request}).data)

        payload = PaymentInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        with ledger_errors():
            payment = record_extra_work_payment(
                work, actor=request.user, **_payment_details(payload.validated_data)
            )
        return Response(
            history_serializer(payment, context={'request': request}).data,
            status=status.HTTP_201_CREATED,
        )


class VendorExtraWorkViewSet(ExtraWorkViewSet):
    serializer_class = VendorExtraWorkSerializer
    module_permission = 'vendor_accounts'
    scope_roles = LEDGER_ROLES
    vendor = True


class ExtraWorkPaymentViewSet(
    LedgerViewMixin,
    ProofActionMixin,
    mixins.DestroyModelMixin,
    viewsets.ReadOnlyModelViewSet,
):
    serializer_class = ExtraWorkPaymentSerializer
    permission_classes = (ModulePermission, RolePermission)
    module_permission = 'accounts'
    filterset_fields = ('extra_work', 'payment_date')
    ordering_fields = ('payment_date', 'amount', 'created_at')

    def get_permissions(self):
        self.allowed_roles = LEDGER_ROLES if self.action == 'destroy' else None
        return super().get_permissions()

    def get_queryset(self):
        qs = self.side.extra_work_payment_model.objects.select_related('extra_work', 'recorded_by')
        return visible_project_rows(self.request.user, qs, lookup='extra_work__project')

    def perform_destroy(self, instance):
        with ledger_errors():
            reverse_extra_work_payment(instance, actor=self.request.user)


class VendorExtraWorkPaymentViewSet(ExtraWorkPaymentViewSet):
    serializer_class = VendorExtraWorkPaymentSerializer
    module_permission = 'vendor_accounts'
    vendor = True


class AccountsSummaryView(APIView):
    """Ledger totals across every visible project, raw and with carry-forward applied."""

    permission_classes = (ModulePermission,)

    @property
    def module_permission(self):
        return 'vendor_accounts' if self._vendor() else 'accounts'

    def _vendor(self) -> bool:
        return self.request.query_params.get('side', 'client') == 'vendor'

    def get(self, request):
        side = request.query_params.get('side', 'client')
        if side not in ('client', 'vendor'):
            raise serializers.ValidationError({'side': 'Expected "client" or "vendor".'})
        vendor = side == 'vendor'
        projects = visible_projects_for_user(request.user)
        cost_relation = 'vendor_cost' if vendor else 'cost'
        costed = projects.filter(**{f'{cost_relation}__isnull': False}).prefetch_related(
            ledger_side(vendor).cost_model.stage_relation,
            'vendor_extra_works' if vendor else 'extra_works',
        )
        summaries = [project_payment_summary(project, vendor=vendor) for project in costed]
        return Response({
            'side': side,
            'ledger': ledger_totals(projects, vendor=vendor),
            'effective': effective_totals(projects, vendor=vendor),
            'projects': ProjectPaymentSummarySerializer(
                summaries, many=True, context={'request': request, 'vendor': vendor}
            ).data,
            'projects_without_cost': list(
                projects.filter(**{f'{cost_relation}__isnull': True}).values_list('id', flat=True)
            ),
        })


class ProofDownloadView(APIView):
    """Serves a stored proof for a signed, unexpired token; the token is the credential."""

    permission_classes = (AllowAny,)
    authentication_classes = ()

    def get(self, request, token):
        try:
            name = unsign_proof_path(token)
        except signing.SignatureExpired:
            return HttpResponse('This link has expired.', status=status.HTTP_410_GONE)
        except signing.BadSignature:
            raise Http404('Unknown proof link.')
        if not default_storage.exists(name):
            raise Http404('Proof file not found.')
        return FileResponse(default_storage.open(name, 'rb'), filename=name.rsplit('/', 1)[-1])


class RolePermissionViewSet(BaseModelViewSet):
    queryset = RolePermissionModel.objects.all().order_by('role')
    serializer_class = RolePermissionSerializer
    module_permission = 'users'


class StaffActivityViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StaffActivity.objects.select_related('actor').order_by('-created_at')
    serializer_class = StaffActivitySerializer
    permission_classes = (ModulePermission, RolePermission)
    module_permission = 'users'
    allowed_roles = (User.Roles.ADMIN,)
    filterset_fields = ('category', 'actor')
