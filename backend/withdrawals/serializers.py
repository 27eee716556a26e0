from __future__ import annotations

from rest_framework import serializers

from .models import (
    AdHocDelegateCredential,
    Decision,
    RegisteredDelegate,
    WithdrawalReason,
    WithdrawalRecord,
    WithdrawalTransition,
)
from .services.delegate_policy import AdHocDelegateInput


RUT_REGEX = r"^\d{7,8}-[\dkK]$"


class WithdrawalReasonSerializer(serializers.ModelSerializer):
    class Meta:
        model = WithdrawalReason
        fields = ["id", "name", "is_active"]


class RegisteredDelegateSerializer(serializers.ModelSerializer):
    class Meta:
        model = RegisteredDelegate
        fields = ["id", "name", "rut", "phone", "relationship_to_student"]


class AdHocDelegateCredentialSerializer(serializers.ModelSerializer):
    class Meta:
        model = AdHocDelegateCredential
        fields = ["id", "name", "rut", "phone", "relationship", "is_verified", "is_single_use", "consumed_at"]


class WithdrawalTransitionSerializer(serializers.ModelSerializer):
    class Meta:
        model = WithdrawalTransition
        fields = [
            "id",
            "stage",
            "action",
            "from_status",
            "to_status",
            "contact_verified",
            "actor",
            "actor_role",
            "comment",
            "created_at",
        ]


class WithdrawalRecordSerializer(serializers.ModelSerializer):
    student_name = serializers.CharField(source="student.full_name", read_only=True)
    student_rut = serializers.CharField(source="student.rut", read_only=True)
    reason_name = serializers.CharField(source="reason.name", read_only=True)
    approver_name = serializers.SerializerMethodField()
    retriever_ref = serializers.IntegerField(read_only=True)
    credential_code = serializers.SerializerMethodField()

    class Meta:
        model = WithdrawalRecord
        fields = [
            "id",
            "credential",
            "credential_code",
            "student",
            "student_name",
            "student_rut",
            "approver",
            "approver_name",
            "reason",
            "reason_name",
            "custom_reason",
            "method",
            "status",
            "contact_verified",
            "retriever_kind",
            "retriever_ref",
            "retriever_name",
            "retriever_rut",
            "retriever_relationship",
            "guardian_authorizer",
            "notes",
            "decided_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_approver_name(self, obj: WithdrawalRecord) -> str:
        return obj.approver.get_full_name() if obj.approver_id else ""

    def get_credential_code(self, obj: WithdrawalRecord) -> str:
        return obj.credential.code if obj.credential_id else ""


class WithdrawalRecordDetailSerializer(WithdrawalRecordSerializer):
    transitions = WithdrawalTransitionSerializer(many=True, read_only=True)

    class Meta(WithdrawalRecordSerializer.Meta):
        fields = WithdrawalRecordSerializer.Meta.fields + ["transitions"]
        read_only_fields = fields


class IssueCredentialInputSerializer(serializers.Serializer):
    student_id = serializers.IntegerField(min_value=1)
    reason_id = serializers.IntegerField(min_value=1)
    custom_reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class ConsumeCredentialInputSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=Decision.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class AdHocDelegateInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    rut = serializers.RegexField(RUT_REGEX, error_messages={"invalid": "El RUT del delegado debe tener formato válido (12345678-9)"})
    phone = serializers.RegexField(r"^\d{8,15}$", error_messages={"invalid": "El teléfono del delegado debe contener entre 8 y 15 dígitos"})
    relationship_to_student = serializers.CharField(max_length=100)


class ManualAuthorizationInputSerializer(serializers.Serializer):
    student_id = serializers.IntegerField(min_value=1)
    reason_id = serializers.IntegerField(min_value=1)
    custom_reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
    delegate_id = serializers.IntegerField(required=False, allow_null=True, min_value=1, default=None)
    manual_delegate = AdHocDelegateInputSerializer(required=False, allow_null=True, default=None)
    discarded_delegate_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1), required=False, default=list
    )
    allow_manual_delegate_override = serializers.BooleanField(required=False, allow_null=True, default=None)
    manual_delegate_override_reason = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=500
    )
    unregistered_delegate_reason = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=500
    )

    def adhoc_delegate(self) -> AdHocDelegateInput | None:
        data = self.validated_data.get("manual_delegate")
        if not data:
            return None
        return AdHocDelegateInput(
            name=data["name"].strip(),
            rut=data["rut"],
            phone=data["phone"],
            relationship_to_student=data["relationship_to_student"].strip(),
        )


class ApprovalDecisionInputSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=Decision.choices)
    comment = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
