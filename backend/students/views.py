from rest_framework import viewsets

from users.permissions import IsAdminOrReadOnly, level_scope

from .filters import StudentFilter
from .models import Student
from .serializers import StudentSerializer
from .services.levels import filter_by_level


class StudentViewSet(viewsets.ModelViewSet):
    queryset = Student.objects.select_related("school_year").all()
    serializer_class = StudentSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_class = StudentFilter

    def get_queryset(self):
        queryset = super().get_queryset()
        # Coordinadores de nivel solo ven sus estudiantes
        scoped_level = level_scope(self.request.user)
        if scoped_level:
            queryset = filter_by_level(queryset, scoped_level)
        return queryset
