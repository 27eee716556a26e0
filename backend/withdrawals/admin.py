from django.contrib import admin

from .models import (
    AdHocDelegateCredential,
    PickupCredential,
    RegisteredDelegate,
    WithdrawalReason,
    WithdrawalRecord,
    WithdrawalTransition,
)


@admin.register(WithdrawalReason)
class WithdrawalReasonAdmin(admin.ModelAdmin):
    list_display = ("name", "is_active", "created_at")
    search_fields = ("name",)
    list_filter = ("is_active",)


@admin.register(RegisteredDelegate)
class RegisteredDelegateAdmin(admin.ModelAdmin):
    list_display = ("name", "guardian", "relationship_to_student", "rut", "phone")
    search_fields = ("name", "rut", "guardian__username", "guardian__rut")


@admin.register(AdHocDelegateCredential)
class AdHocDelegateCredentialAdmin(admin.ModelAdmin):
    list_display = ("name", "guardian", "relationship", "is_verified", "consumed_at", "created_at")
    search_fields = ("name", "rut", "guardian__username")
    list_filter = ("is_verified",)
    readonly_fields = ("created_at",)


@admin.register(PickupCredential)
class PickupCredentialAdmin(admin.ModelAdmin):
    list_display = ("code", "student", "issued_by", "reason", "expires_at", "consumed", "consumed_at")
    search_fields = ("code", "student__first_name", "student__last_name", "student__rut")
    list_filter = ("consumed", "reason")
    readonly_fields = ("created_at", "updated_at")


class WithdrawalTransitionInline(admin.TabularInline):
    model = WithdrawalTransition
    extra = 0
    can_delete = False
    readonly_fields = (
        "stage",
        "action",
        "from_status",
        "to_status",
        "contact_verified",
        "actor",
        "actor_role",
        "comment",
        "created_at",
    )


@admin.register(WithdrawalRecord)
class WithdrawalRecordAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "student",
        "method",
        "status",
        "contact_verified",
        "retriever_kind",
        "retriever_name",
        "approver",
        "decided_at",
    )
    list_filter = ("method", "status", "retriever_kind", "contact_verified")
    search_fields = ("student__first_name", "student__last_name", "student__rut", "retriever_name", "retriever_rut")
    date_hierarchy = "decided_at"
    readonly_fields = ("created_at", "updated_at")
    inlines = [WithdrawalTransitionInline]
