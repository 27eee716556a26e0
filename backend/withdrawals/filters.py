import django_filters
from django.db.models import Q

from .models import WithdrawalRecord


class WithdrawalRecordFilter(django_filters.FilterSet):
    date_from = django_filters.DateFilter(field_name="decided_at", lookup_expr="date__gte")
    date_to = django_filters.DateFilter(field_name="decided_at", lookup_expr="date__lte")
    student = django_filters.NumberFilter(field_name="student_id")
    approver = django_filters.NumberFilter(field_name="approver_id")
    q = django_filters.CharFilter(method="filter_q")

    class Meta:
        model = WithdrawalRecord
        fields = ["status", "method", "retriever_kind", "contact_verified"]

    def filter_q(self, queryset, name, value):
        term = (value or "").strip()
        if not term:
            return queryset
        return queryset.filter(
            Q(student__first_name__icontains=term)
            | Q(student__last_name__icontains=term)
            | Q(student__rut__icontains=term)
            | Q(retriever_name__icontains=term)
        )
