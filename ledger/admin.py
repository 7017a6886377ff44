from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import (
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


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (('Role Info', {'fields': ('role', 'phone')}),)
    list_display = ('username', 'email', 'role', 'is_staff')
    list_filter = ('role', 'is_staff')


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('client_name', 'location', 'status', 'start_date', 'deadline')
    search_fields = ('client_name', 'client_email', 'location')
    list_filter = ('status',)
    filter_horizontal = ('members',)


@admin.register(ProjectCost, VendorCost)
class CostAdmin(admin.ModelAdmin):
    list_display = ('project', 'total_cost', 'created_by', 'updated_at')
    search_fields = ('project__client_name',)


class ReadOnlyPaymentInline(admin.TabularInline):
    extra = 0
    can_delete = False
    fields = ('payment_date', 'amount', 'payment_method', 'reference_number', 'recorded_by')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class PaymentTransactionInline(ReadOnlyPaymentInline):
    model = PaymentTransaction


class VendorPaymentTransactionInline(ReadOnlyPaymentInline):
    model = VendorPaymentTransaction


class ExtraWorkPaymentInline(ReadOnlyPaymentInline):
    model = ExtraWorkPayment


class VendorExtraWorkPaymentInline(ReadOnlyPaymentInline):
    model = VendorExtraWorkPayment


class StageAdmin(admin.ModelAdmin):
    list_display = ('project', 'stage', 'percentage', 'required_amount', 'paid_amount', 'status')
    list_filter = ('stage', 'status')
    search_fields = ('project__client_name',)
    # Ledger columns move only through payments and cost changes.
    readonly_fields = ('position', 'percentage', 'required_amount', 'paid_amount', 'status')


@admin.register(PaymentStage)
class PaymentStageAdmin(StageAdmin):
    inlines = [PaymentTransactionInline]


@admin.register(VendorPaymentStage)
class VendorPaymentStageAdmin(StageAdmin):
    inlines = [VendorPaymentTransactionInline]


class LedgerPaymentAdmin(admin.ModelAdmin):
    list_display = ('payment_date', 'amount', 'payment_method', 'reference_number', 'recorded_by')
    list_filter = ('payment_date',)

    def has_change_permission(self, request, obj=None):
        # Entries are append-only; reverse by deleting.
        return obj is None and super().has_change_permission(request, obj)


@admin.register(PaymentTransaction, VendorPaymentTransaction)
class StagePaymentAdmin(LedgerPaymentAdmin):
    list_display = ('stage',) + LedgerPaymentAdmin.list_display
    search_fields = ('project__client_name', 'reference_number')


@admin.register(ExtraWorkPayment, VendorExtraWorkPayment)
class ExtraWorkPaymentAdmin(LedgerPaymentAdmin):
    list_display = ('extra_work',) + LedgerPaymentAdmin.list_display
    search_fields = ('extra_work__project__client_name', 'reference_number')


class BaseExtraWorkAdmin(admin.ModelAdmin):
    list_display = ('project', 'description', 'amount', 'paid_amount', 'status', 'created_by')
    list_filter = ('status',)
    search_fields = ('project__client_name', 'description')
    readonly_fields = ('paid_amount', 'status')

    def save_model(self, request, obj, form, change):
        obj.refresh_status(save=False)
        super().save_model(request, obj, form, change)


@admin.register(ExtraWork)
class ExtraWorkAdmin(BaseExtraWorkAdmin):
    inlines = [ExtraWorkPaymentInline]


@admin.register(VendorExtraWork)
class VendorExtraWorkAdmin(BaseExtraWorkAdmin):
    inlines = [VendorExtraWorkPaymentInline]


@admin.register(RolePermission)
class RolePermissionAdmin(admin.ModelAdmin):
    list_display = ('role', 'projects', 'accounts', 'vendor_accounts', 'users')


@admin.register(StaffActivity)
class StaffActivityAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'actor', 'category', 'message')
    list_filter = ('category',)
    search_fields = ('message', 'actor__username', 'actor__first_name', 'actor__last_name')
