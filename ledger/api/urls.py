from django.urls import include, path
from rest_framework.routers import DefaultRouter
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from ledger.api import views

router = DefaultRouter()
router.register('projects', views.ProjectViewSet, basename='project')
router.register('payment-stages', views.PaymentStageViewSet, basename='payment-stage')
router.register('payment-transactions', views.PaymentTransactionViewSet, basename='payment-transaction')
router.register('extra-work', views.ExtraWorkViewSet, basename='extra-work')
router.register('extra-work-payments', views.ExtraWorkPaymentViewSet, basename='extra-work-payment')
router.register('vendor-payment-stages', views.VendorPaymentStageViewSet, basename='vendor-payment-stage')
router.register(
    'vendor-payment-transactions', views.VendorPaymentTransactionViewSet, basename='vendor-payment-transaction'
)
router.register('vendor-extra-work', views.VendorExtraWorkViewSet, basename='vendor-extra-work')
router.register(
    'vendor-extra-work-payments', views.VendorExtraWorkPaymentViewSet, basename='vendor-extra-work-payment'
)
router.register('role-permissions', views.RolePermissionViewSet, basename='role-permission')
router.register('staff-activity', views.StaffActivityViewSet, basename='staff-activity')

urlpatterns = [
    path('auth/token/', views.CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', views.CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/me/', views.MeView.as_view(), name='me'),
    path('accounts/summary/', views.AccountsSummaryView.as_view(), name='accounts_summary'),
    path('proofs/<str:token>/', views.ProofDownloadView.as_view(), name='proof_download'),
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('', include(router.urls)),
]
