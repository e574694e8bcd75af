from __future__ import annotations

from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response

from academic.levels import parse_level
from academic.services import NoActiveSchoolYear
from users.permissions import IsAdminOrReadOnly, IsConvivenciaStaff, level_scope

from .alerts import load_alerts
from .cases import load_cases
from .models import AlertSetting, FollowUp, Infraction
from .serializers import (
	AlertSettingSerializer,
	CaseSerializer,
	FollowUpSerializer,
	InfractionObservationsSerializer,
	InfractionSerializer,
	StudentAlertSerializer,
)


def _requested_level(request):
	"""Nivel pedido en `?level=`, restringido al nivel del coordinador."""
	level = parse_level(request.query_params.get("level"))
	scoped_level = level_scope(request.user)
	if scoped_level:
		if level and level != scoped_level:
			raise PermissionDenied("No tienes acceso a ese nivel.")
		return scoped_level
	return level


class InfractionViewSet(viewsets.ReadOnlyModelViewSet):
	queryset = (
		Infraction.objects.select_related("student", "trimester")
		.prefetch_related("follow_ups")
		.all()
	)
	serializer_class = InfractionSerializer
	permission_classes = [IsConvivenciaStaff]
	lookup_field = "hash"
	filterset_fields = ["school_year", "infraction_type", "level", "trimester", "attended", "student", "source"]

	def get_queryset(self):
		queryset = super().get_queryset()
		scoped_level = level_scope(self.request.user)
		if scoped_level:
			queryset = queryset.filter(level=scoped_level)
		return queryset

	@action(detail=True, methods=["post"])
	def attend(self, request, hash=None):
		infraction: Infraction = self.get_object()
		infraction.mark_attended(user=request.user)
		return Response(self.get_serializer(infraction).data)

	@action(detail=True, methods=["patch"])
	def observations(self, request, hash=None):
		infraction: Infraction = self.get_object()
		serializer = InfractionObservationsSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)

		infraction.observations = serializer.validated_data["observations"]
		infraction.observations_author = request.user.get_full_name() or request.user.get_username()
		infraction.observations_at = timezone.now()
		infraction.save(update_fields=["observations", "observations_author", "observations_at", "updated_at"])
		return Response(self.get_serializer(infraction).data)


class FollowUpViewSet(viewsets.ModelViewSet):
	queryset = FollowUp.objects.select_related("infraction").all()
	serializer_class = FollowUpSerializer
	permission_classes = [IsConvivenciaStaff]
	filterset_fields = ["infraction__hash", "number"]

	def get_queryset(self):
		queryset = super().get_queryset()
		scoped_level = level_scope(self.request.user)
		if scoped_level:
			queryset = queryset.filter(infraction__level=scoped_level)
		return queryset

	def perform_create(self, serializer):
		author = serializer.validated_data.get("author") or self.request.user.get_full_name()
		serializer.save(created_by=self.request.user, author=author or self.request.user.get_username())


class CaseViewSet(viewsets.ViewSet):
	permission_classes = [IsConvivenciaStaff]

	def list(self, request):
		try:
			level = _requested_level(request)
		except ValueError as exc:
			return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

		try:
			cases = load_cases(level)
		except NoActiveSchoolYear as exc:
			return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

		status_filter = (request.query_params.get("status") or "").strip().lower()
		if status_filter in {"open", "closed"}:
			cases = [case for case in cases if case.status == status_filter]

		return Response(CaseSerializer(cases, many=True).data)


class AlertViewSet(viewsets.ViewSet):
	permission_classes = [IsConvivenciaStaff]

	def list(self, request):
		try:
			level = _requested_level(request)
		except ValueError as exc:
			return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

		if not AlertSetting.objects.exists():
			return Response(
				{"detail": "No hay umbrales de alerta configurados."},
				status=status.HTTP_400_BAD_REQUEST,
			)

		try:
			alerts = load_alerts(level)
		except NoActiveSchoolYear as exc:
			return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

		return Response(StudentAlertSerializer(alerts, many=True).data)


class AlertSettingViewSet(
	mixins.ListModelMixin,
	mixins.RetrieveModelMixin,
	mixins.CreateModelMixin,
	mixins.UpdateModelMixin,
	viewsets.GenericViewSet,
):
	queryset = AlertSetting.objects.all()
	serializer_class = AlertSettingSerializer
	permission_classes = [IsAdminOrReadOnly]
