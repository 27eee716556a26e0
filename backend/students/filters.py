import django_filters
from django.db.models import Q

from .models import Student


class StudentFilter(django_filters.FilterSet):
    q = django_filters.CharFilter(method="filter_q")
    course_name = django_filters.CharFilter(lookup_expr="iexact")
    without_guardian = django_filters.BooleanFilter(field_name="guardian", lookup_expr="isnull")

    class Meta:
        model = Student
        fields = ["guardian"]

    def filter_q(self, queryset, name, value):
        term = (value or "").strip()
        if not term:
            return queryset
        return queryset.filter(
            Q(first_name__icontains=term) | Q(last_name__icontains=term) | Q(rut__icontains=term)
        )
