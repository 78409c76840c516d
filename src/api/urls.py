"""Main API URL router for /api/v1/."""
from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from api.v1 import views as v1_views
from api.v1.serializers import CustomTokenObtainPairSerializer

router = DefaultRouter()
router.register(r"targets", v1_views.TargetViewSet, basename="target")
router.register(r"allocation-patterns", v1_views.AllocationPatternViewSet, basename="allocation-pattern")
router.register(r"commissions", v1_views.CommissionViewSet, basename="commission")
router.register(r"commission-rules", v1_views.CommissionRuleViewSet, basename="commission-rule")
router.register(r"commission-reports", v1_views.CommissionReportViewSet, basename="commission-report")

urlpatterns = [
    path(
        "auth/token/",
        TokenObtainPairView.as_view(serializer_class=CustomTokenObtainPairSerializer),
        name="token_obtain_pair",
    ),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("", include(router.urls)),
]
