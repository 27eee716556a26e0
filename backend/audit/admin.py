from django.contrib import admin

from .models import AuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
	list_display = ("created_at", "event_type", "actor", "object_type", "object_id", "status_code")
	list_filter = ("event_type", "object_type", "created_at")
	search_fields = ("actor__username", "actor__rut", "object_id", "path")
	date_hierarchy = "created_at"
	readonly_fields = (
		"created_at",
		"actor",
		"event_type",
		"object_type",
		"object_id",
		"path",
		"method",
		"status_code",
		"ip_address",
		"user_agent",
		"metadata",
	)

	def has_add_permission(self, request):
		return False

	def has_change_permission(self, request, obj=None):
		return False

	def has_delete_permission(self, request, obj=None):
		return False
