from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from users.permissions import IsAdmin, IsAdminOrReadOnly

from .models import SchoolYear, Trimester
from .serializers import SchoolYearSerializer, TrimesterSerializer
from .services import NoActiveSchoolYear, get_active_school_year


class SchoolYearViewSet(viewsets.ModelViewSet):
    queryset = SchoolYear.objects.prefetch_related("trimesters").all()
    serializer_class = SchoolYearSerializer
    permission_classes = [IsAdminOrReadOnly]

    @action(detail=False, methods=["get"])
    def active(self, request):
        try:
            school_year = get_active_school_year()
        except NoActiveSchoolYear as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        return Response(self.get_serializer(school_year).data)

    @action(detail=True, methods=["post"], permission_classes=[IsAdmin])
    def activate(self, request, pk=None):
        school_year: SchoolYear = self.get_object()
        school_year.is_active = True
        school_year.save()
        return Response(self.get_serializer(school_year).data)


class TrimesterViewSet(viewsets.ModelViewSet):
    queryset = Trimester.objects.select_related("school_year").all()
    serializer_class = TrimesterSerializer
    permission_classes = [IsAdminOrReadOnly]
    filterset_fields = ["school_year"]
