import django_filters

from academic.levels import parse_level

from .models import Student
from .services.levels import filter_by_level


class StudentFilter(django_filters.FilterSet):
    level = django_filters.CharFilter(method="filter_level")
    q = django_filters.CharFilter(method="filter_search")

    class Meta:
        model = Student
        fields = ["school_year", "grade", "section", "is_active"]

    def filter_level(self, queryset, name, value):
        try:
            level = parse_level(value)
        except ValueError:
            return queryset.none()
        if level is None:
            return queryset
        return filter_by_level(queryset, level)

    def filter_search(self, queryset, name, value):
        term = (value or "").strip()
        if not term:
            return queryset
        return (
            queryset.filter(first_name__icontains=term)
            | queryset.filter(last_name__icontains=term)
            | queryset.filter(code__iexact=term)
        )
