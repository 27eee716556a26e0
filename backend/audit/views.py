from __future__ import annotations

from rest_framework import permissions, viewsets

from users.permissions import IsAdmin

from .models import AuditLog
from .serializers import AuditLogSerializer


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
	queryset = AuditLog.objects.select_related("actor").all().order_by("-created_at", "-id")
	serializer_class = AuditLogSerializer
	permission_classes = [permissions.IsAuthenticated, IsAdmin]
	filterset_fields = ["event_type", "object_type", "object_id", "actor"]

	def get_queryset(self):
		qs = super().get_queryset()
		date_from = self.request.query_params.get("date_from")
		date_to = self.request.query_params.get("date_to")
		if date_from:
			qs = qs.filter(created_at__date__gte=date_from)
		if date_to:
			qs = qs.filter(created_at__date__lte=date_to)
		return qs
