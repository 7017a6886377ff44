from __future__ import annotations

from django.core.exceptions import ValidationError
from rest_framework import serializers

from ledger.models import (
    ExtraWork,
    ExtraWorkPayment,
    PaymentStage,
    PaymentTransaction,
    Project,
    ProjectCost,
    RolePermission,
    StaffActivity,
    User,
    VendorCost,
    VendorExtraWork,
    VendorExtraWorkPayment,
    VendorPaymentStage,
    VendorPaymentTransaction,
)
from ledger.proofs import signed_proof_url, validate_proof_file


def validate_media_file(value):
    if not value:
        return value
    try:
        return validate_proof_file(value)
    except ValidationError as exc:
        raise serializers.ValidationError(exc.messages) from exc


class CleanModelSerializer(serializers.ModelSerializer):
    """ModelSerializer that runs full_clean before saving."""

    def _perform_full_clean(self, instance):
        try:
            instance.full_clean()
        except ValidationError as exc:
            if hasattr(exc, 'message_dict'):
                raise serializers.ValidationError(exc.message_dict) from exc
            raise serializers.ValidationError({'detail': exc.messages}) from exc

    def create(self, validated_data, **kwargs):
        validated_data.update(kwargs)
        many_to_many = {
            name: validated_data.pop(name)
            for name in list(validated_data)
            if self.Meta.model._meta.get_field(name).many_to_many
        }
        instance = self.Meta.model(**validated_data)
        self._perform_full_clean(instance)
        instance.save()
        for name, value in many_to_many.items():
            getattr(instance, name).set(value)
        return instance

    def update(self, instance, validated_data, **kwargs):
        validated_data.update(kwargs)
        many_to_many = {}
        for attr, value in validated_data.items():
            if instance._meta.get_field(attr).many_to_many:
                many_to_many[attr] = value
                continue
            setattr(instance, attr, value)
        self._perform_full_clean(instance)
        instance.save()
        for name, value in many_to_many.items():
            getattr(instance, name).set(value)
        return instance


class UserSummarySerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ('id', 'username', 'full_name', 'email', 'role')

    def get_full_name(self, obj):
        return obj.get_full_name() or obj.username


class UserSerializer(UserSummarySerializer):
    class Meta(UserSummarySerializer.Meta):
        fields = UserSummarySerializer.Meta.fields + ('first_name', 'last_name', 'phone', 'is_active')


class ProjectSerializer(CleanModelSerializer):
    client_user_detail = UserSummarySerializer(source='client_user', read_only=True)
    members_detail = UserSummarySerializer(source='members', many=True, read_only=True)
    created_by_detail = UserSummarySerializer(source='created_by', read_only=True)

    class Meta:
        model = Project
        fields = (
            'id',
            'client_name',
            'client_email',
            'client_phone',
            'location',
            'status',
            'start_date',
            'deadline',
            'client_user',
            'client_user_detail',
            'members',
            'members_detail',
            'created_by',
            'created_by_detail',
            'created_at',
            'updated_at',
        )
        read_only_fields = ('created_by',)


class ProjectCostSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProjectCost
        fields = ('id', 'project', 'total_cost', 'created_by', 'created_at', 'updated_at')
        read_only_fields = fields


class VendorCostSerializer(ProjectCostSerializer):
    class Meta(ProjectCostSerializer.Meta):
        model = VendorCost


class CostInputSerializer(serializers.Serializer):
    total_cost = serializers.DecimalField(max_digits=14, decimal_places=2)


class PaymentStageSerializer(serializers.ModelSerializer):
    stage_label = serializers.CharField(read_only=True)
    outstanding = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = PaymentStage
        fields = (
            'id',
            'project',
            'stage',
            'stage_label',
            'position',
            'percentage',
            'required_amount',
            'paid_amount',
            'outstanding',
            'status',
            'created_at',
            'updated_at',
        )
        read_only_fields = fields


class VendorPaymentStageSerializer(PaymentStageSerializer):
    class Meta(PaymentStageSerializer.Meta):
        model = VendorPaymentStage


class PaymentInputSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_date = serializers.DateField()
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    reference_number = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    proof = serializers.FileField(required=False, allow_null=True, validators=[validate_media_file])


class LedgerPaymentSerializer(serializers.ModelSerializer):
    """Read shape shared by every payment table; entries are created through the ledger operations."""

    recorded_by_detail = UserSummarySerializer(source='recorded_by', read_only=True)
    has_proof = serializers.SerializerMethodField()
    proof_url = serializers.SerializerMethodField()

    base_fields = (
        'id',
        'amount',
        'payment_date',
        'payment_method',
        'reference_number',
        'notes',
        'has_proof',
        'proof_url',
        'recorded_by',
        'recorded_by_detail',
        'created_at',
    )

    def get_has_proof(self, obj) -> bool:
        return bool(obj.proof)

    def get_proof_url(self, obj):
        if not obj.proof:
            return None
        return signed_proof_url(obj.proof.name, self.context.get('request'))


class PaymentTransactionSerializer(LedgerPaymentSerializer):
    stage_label = serializers.CharField(source='stage.stage_label', read_only=True)

    class Meta:
        model = PaymentTransaction
        fields = ('project', 'stage', 'stage_label') + LedgerPaymentSerializer.base_fields
        read_only_fields = fields


class VendorPaymentTransactionSerializer(PaymentTransactionSerializer):
    class Meta(PaymentTransactionSerializer.Meta):
        model = VendorPaymentTransaction


class StagePaymentCreateSerializer(PaymentInputSerializer):
    stage = serializers.PrimaryKeyRelatedField(queryset=PaymentStage.objects.none())

    def __init__(self, *args, stage_queryset=None, **kwargs):
        super().__init__(*args, **kwargs)
        if stage_queryset is not None:
            self.fields['stage'].queryset = stage_queryset


class ExtraWorkSerializer(serializers.ModelSerializer):
    created_by_detail = UserSummarySerializer(source='created_by', read_only=True)
    outstanding = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = ExtraWork
        fields = (
            'id',
            'project',
            'amount',
            'description',
            'paid_amount',
            'outstanding',
            'status',
            'created_by',
            'created_by_detail',
            'created_at',
            'updated_at',
        )
        read_only_fields = ('paid_amount', 'status', 'created_by')


class VendorExtraWorkSerializer(ExtraWorkSerializer):
    class Meta(ExtraWorkSerializer.Meta):
        model = VendorExtraWork


class ExtraWorkPaymentSerializer(LedgerPaymentSerializer):
    class Meta:
        model = ExtraWorkPayment
        fields = ('extra_work',) + LedgerPaymentSerializer.base_fields
        read_only_fields = fields


class VendorExtraWorkPaymentSerializer(ExtraWorkPaymentSerializer):
    class Meta(ExtraWorkPaymentSerializer.Meta):
        model = VendorExtraWorkPayment


class AllocatedStageSerializer(serializers.Serializer):
    id = serializers.IntegerField(source='stage.id')
    stage = serializers.CharField(source='stage.stage')
    stage_label = serializers.CharField(source='stage.stage_label')
    percentage = serializers.IntegerField(source='stage.percentage')
    required_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    paid_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    status = serializers.CharField(source='stage.status')
    carried_in = serializers.DecimalField(max_digits=14, decimal_places=2)
    effective_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    effective_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    effective_status = serializers.CharField()
    has_carry_forward = serializers.BooleanField()


class ProjectPaymentSummarySerializer(serializers.Serializer):
    project = serializers.IntegerField(source='project.id')
    client_name = serializers.CharField(source='project.client_name')
    has_cost = serializers.BooleanField()
    total_cost = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_pending = serializers.DecimalField(max_digits=14, decimal_places=2)
    extra_work_total = serializers.DecimalField(max_digits=14, decimal_places=2)
    extra_work_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    unapplied_excess = serializers.DecimalField(
        source='allocation.unapplied_excess', max_digits=14, decimal_places=2
    )
    stages = AllocatedStageSerializer(source='allocation.stages', many=True)
    extra_works = serializers.SerializerMethodField()

    def get_extra_works(self, obj):
        serializer_class = VendorExtraWorkSerializer if self.context.get('vendor') else ExtraWorkSerializer
        return serializer_class(obj.extra_works, many=True, context=self.context).data


class RolePermissionSerializer(CleanModelSerializer):
    class Meta:
        model = RolePermission
        fields = ('id', 'role', 'projects', 'accounts', 'vendor_accounts', 'users')


class StaffActivitySerializer(serializers.ModelSerializer):
    actor_detail = UserSummarySerializer(source='actor', read_only=True)

    class Meta:
        model = StaffActivity
        fields = ('id', 'actor', 'actor_detail', 'category', 'message', 'related_url', 'created_at')
