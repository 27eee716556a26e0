from django.contrib import admin

from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "recipient", "type", "title", "created_at", "read_at")
    list_filter = ("type", "read_at")
    search_fields = ("title", "dedupe_key", "recipient__username", "recipient__rut")
    readonly_fields = ("created_at", "dedupe_key")
