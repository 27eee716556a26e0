from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    GuardianCredentialViewSet,
    InspectorCredentialViewSet,
    ManualAuthorizationViewSet,
    WithdrawalReasonViewSet,
    WithdrawalRecordViewSet,
)


router = DefaultRouter()
router.register(r"reasons", WithdrawalReasonViewSet, basename="withdrawalreason")
router.register(r"guardian/credentials", GuardianCredentialViewSet, basename="guardiancredential")
router.register(r"inspector/credentials", InspectorCredentialViewSet, basename="inspectorcredential")
router.register(r"inspector/manual-authorizations", ManualAuthorizationViewSet, basename="manualauthorization")
router.register(r"records", WithdrawalRecordViewSet, basename="withdrawalrecord")

urlpatterns = [
    path("", include(router.urls)),
]
