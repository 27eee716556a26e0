from __future__ import annotations

import logging
from dataclasses import asdict

from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from audit.models import AuditLog
from audit.serializers import AuditLogSerializer
from audit.services import log_event, withdrawal_trail
from users.models import User
from users.permissions import IsAdmin, IsAdminOrReadOnly, IsGuardian, IsInspector

from .events import get_event_channel
from .exceptions import WithdrawalError
from .filters import WithdrawalRecordFilter
from .models import WithdrawalReason, WithdrawalRecord
from .serializers import (
    ApprovalDecisionInputSerializer,
    ConsumeCredentialInputSerializer,
    IssueCredentialInputSerializer,
    ManualAuthorizationInputSerializer,
    WithdrawalReasonSerializer,
    WithdrawalRecordDetailSerializer,
    WithdrawalRecordSerializer,
)
from .services import credentials
from .services.approvals import ApprovalCoordinator
from .services.delegate_policy import AllowsAdHoc, RequiresSelection
from .services.reporting import guardian_credential_history, guardian_credential_stats
from .services.withdrawal import authorize_manually, consume_credential


logger = logging.getLogger(__name__)


class _HistoryQuerySerializer(serializers.Serializer):
    student_id = serializers.IntegerField(required=False, min_value=1)
    include_pending = serializers.BooleanField(required=False, default=True)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=20)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)


def _error_response(exc: WithdrawalError) -> Response:
    logger.info("Withdrawal operation rejected (%s): %s", exc.code, exc.message)
    return Response({"detail": exc.message, "code": exc.code}, status=exc.status_code)


def _coordinator() -> ApprovalCoordinator:
    return ApprovalCoordinator(events=get_event_channel())


class WithdrawalReasonViewSet(viewsets.ModelViewSet):
    serializer_class = WithdrawalReasonSerializer
    permission_classes = [IsAdminOrReadOnly]

    def get_queryset(self):
        qs = WithdrawalReason.objects.all().order_by("name")
        role = getattr(self.request.user, "role", "")
        if role not in {User.ROLE_SUPERADMIN, User.ROLE_ADMIN}:
            qs = qs.filter(is_active=True)
        return qs


class GuardianCredentialViewSet(viewsets.ViewSet):
    """QR credentials seen from the guardian's side."""

    permission_classes = [IsGuardian]
    lookup_field = "code"
    lookup_value_regex = "[^/]+"

    def create(self, request):
        data = IssueCredentialInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        try:
            issued = credentials.issue_credential(
                guardian=request.user,
                student_id=data.validated_data["student_id"],
                reason_id=data.validated_data["reason_id"],
                custom_reason=data.validated_data.get("custom_reason", ""),
            )
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.CREDENTIAL_ISSUED,
            object_type="PickupCredential",
            object_id=issued.credential.pk,
            status_code=status.HTTP_201_CREATED,
            metadata={"student_id": issued.credential.student_id, "reason_id": issued.credential.reason_id},
        )
        return Response(
            {
                "id": issued.credential.pk,
                "code": issued.code,
                "expires_at": issued.expires_at,
                "student_id": issued.credential.student_id,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=["get"], url_path="active")
    def active(self, request):
        return Response(credentials.active_credentials_for_guardian(request.user), status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, code=None):
        try:
            credentials.cancel_credential(code, guardian=request.user)
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.CREDENTIAL_CANCELLED,
            object_type="PickupCredential",
            object_id=code,
            status_code=status.HTTP_200_OK,
        )
        return Response({"detail": "Código QR cancelado exitosamente"}, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="qr")
    def qr(self, request, code=None):
        try:
            image = credentials.qr_png_data_uri(code, guardian=request.user)
        except WithdrawalError as e:
            return _error_response(e)
        return Response({"code": code, "qr_png": image}, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="history")
    def history(self, request):
        params = _HistoryQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        payload = guardian_credential_history(
            request.user,
            student_id=params.validated_data.get("student_id"),
            include_pending=params.validated_data["include_pending"],
            limit=params.validated_data["limit"],
            offset=params.validated_data["offset"],
        )
        return Response(payload, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        return Response(guardian_credential_stats(request.user), status=status.HTTP_200_OK)


class InspectorCredentialViewSet(viewsets.ViewSet):
    """Scanning and consuming QR credentials at the school gate."""

    permission_classes = [IsInspector]
    lookup_field = "code"
    lookup_value_regex = "[^/]+"

    def retrieve(self, request, code=None):
        try:
            info = credentials.get_credential_info(code)
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.CREDENTIAL_VIEWED,
            object_type="PickupCredential",
            object_id=info.code,
            status_code=status.HTTP_200_OK,
            metadata={"student_id": info.student["id"], "is_expired": info.is_expired},
        )
        return Response(asdict(info), status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="consume")
    def consume(self, request, code=None):
        data = ConsumeCredentialInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        try:
            withdrawal = consume_credential(
                code,
                inspector=request.user,
                decision=data.validated_data["action"],
                notes=data.validated_data.get("notes", ""),
            )
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.CREDENTIAL_CONSUMED,
            object_type="WithdrawalRecord",
            object_id=withdrawal.pk,
            status_code=status.HTTP_201_CREATED,
            metadata={"credential_id": withdrawal.credential_id, "status": withdrawal.status},
        )
        return Response(WithdrawalRecordSerializer(withdrawal).data, status=status.HTTP_201_CREATED)


class ManualAuthorizationViewSet(viewsets.ViewSet):
    permission_classes = [IsInspector]

    def create(self, request):
        data = ManualAuthorizationInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)
        payload = data.validated_data

        try:
            outcome = authorize_manually(
                inspector=request.user,
                student_id=payload["student_id"],
                reason_id=payload["reason_id"],
                custom_reason=payload.get("custom_reason", ""),
                registered_delegate_id=payload.get("delegate_id"),
                adhoc_delegate=data.adhoc_delegate(),
                discarded_delegate_ids=payload.get("discarded_delegate_ids") or (),
                override_requested=payload.get("allow_manual_delegate_override"),
                override_justification=payload.get("manual_delegate_override_reason", ""),
                unregistered_reason=payload.get("unregistered_delegate_reason", ""),
                events=get_event_channel(),
            )
        except WithdrawalError as e:
            return _error_response(e)

        if isinstance(outcome, RequiresSelection):
            return Response(
                {
                    "requires_delegate_selection": True,
                    "available_delegates": [asdict(d) for d in outcome.available_delegates],
                    "discarded_delegate_ids": outcome.discarded_delegate_ids,
                    "message": outcome.message,
                },
                status=status.HTTP_200_OK,
            )
        if isinstance(outcome, AllowsAdHoc):
            return Response(
                {
                    "requires_delegate_selection": False,
                    "allows_manual_delegate": True,
                    "no_available_delegates": outcome.none_available,
                    "discarded_delegate_ids": outcome.discarded_delegate_ids,
                    "message": outcome.message,
                },
                status=status.HTTP_200_OK,
            )

        withdrawal = outcome.withdrawal
        log_event(
            request,
            event_type=AuditLog.EventType.MANUAL_AUTHORIZATION,
            object_type="WithdrawalRecord",
            object_id=withdrawal.pk,
            status_code=status.HTTP_201_CREATED,
            metadata={
                "student_id": withdrawal.student_id,
                "retriever_kind": withdrawal.retriever_kind,
                "pending_guardian_approval": outcome.pending_guardian_approval,
                "had_active_credential": outcome.had_active_credential,
            },
        )
        return Response(
            {
                "withdrawal": WithdrawalRecordSerializer(withdrawal).data,
                "pending_guardian_approval": outcome.pending_guardian_approval,
                "had_active_credential": outcome.had_active_credential,
                "message": outcome.message,
            },
            status=status.HTTP_201_CREATED,
        )


class WithdrawalRecordViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = WithdrawalRecordFilter
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        user = self.request.user
        qs = WithdrawalRecord.objects.select_related("student", "reason", "approver", "credential")
        role = getattr(user, "role", "")
        if role in {User.ROLE_SUPERADMIN, User.ROLE_ADMIN}:
            return qs
        if role == User.ROLE_INSPECTOR:
            return qs.filter(approver=user)
        if role == User.ROLE_PARENT:
            return qs.filter(Q(student__guardian=user) | Q(retriever_user=user)).distinct()
        return qs.none()

    def get_serializer_class(self):
        if self.action == "retrieve":
            return WithdrawalRecordDetailSerializer
        return WithdrawalRecordSerializer

    @action(detail=False, methods=["get"], url_path="pending-guardian", permission_classes=[IsGuardian])
    def pending_guardian(self, request):
        qs = _coordinator().pending_guardian_decisions(request.user)
        return Response(WithdrawalRecordSerializer(qs, many=True).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="guardian-decision", permission_classes=[IsGuardian])
    def guardian_decision(self, request, pk=None):
        data = ApprovalDecisionInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        try:
            withdrawal = _coordinator().resolve_pending_guardian_approval(
                withdrawal_id=int(pk),
                guardian=request.user,
                action=data.validated_data["action"],
                comment=data.validated_data.get("comment", ""),
            )
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.GUARDIAN_DECISION,
            object_type="WithdrawalRecord",
            object_id=withdrawal.pk,
            status_code=status.HTTP_200_OK,
            metadata={"action": data.validated_data["action"], "status": withdrawal.status},
        )
        return Response(WithdrawalRecordSerializer(withdrawal).data, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="pending-inspector", permission_classes=[IsInspector])
    def pending_inspector(self, request):
        qs = _coordinator().pending_inspector_confirmations(request.user)
        return Response(WithdrawalRecordSerializer(qs, many=True).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="inspector-confirmation", permission_classes=[IsInspector])
    def inspector_confirmation(self, request, pk=None):
        data = ApprovalDecisionInputSerializer(data=request.data or {})
        data.is_valid(raise_exception=True)

        try:
            withdrawal = _coordinator().finalize_inspector_confirmation(
                withdrawal_id=int(pk),
                inspector=request.user,
                action=data.validated_data["action"],
                comment=data.validated_data.get("comment", ""),
            )
        except WithdrawalError as e:
            return _error_response(e)

        log_event(
            request,
            event_type=AuditLog.EventType.INSPECTOR_DECISION,
            object_type="WithdrawalRecord",
            object_id=withdrawal.pk,
            status_code=status.HTTP_200_OK,
            metadata={"action": data.validated_data["action"], "status": withdrawal.status},
        )
        return Response(WithdrawalRecordSerializer(withdrawal).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="audit-trail", permission_classes=[IsAdmin])
    def audit_trail(self, request, pk=None):
        withdrawal = self.get_object()
        return Response(AuditLogSerializer(withdrawal_trail(withdrawal.pk), many=True).data, status=status.HTTP_200_OK)
