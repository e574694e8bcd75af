from __future__ import annotations

from rest_framework import serializers

from academic.levels import parse_level

from .models import SeguimientoConfig, SyncRun


class SyncRunSerializer(serializers.ModelSerializer):
    school_year_name = serializers.CharField(source="school_year.name", read_only=True, default=None)
    error_count = serializers.SerializerMethodField()

    class Meta:
        model = SyncRun
        fields = [
            "id",
            "sync_type",
            "status",
            "school_year",
            "school_year_name",
            "options",
            "students_processed",
            "records_created",
            "records_updated",
            "errors",
            "error_count",
            "progress",
            "triggered_by",
            "started_at",
            "completed_at",
            "duration_seconds",
        ]
        read_only_fields = fields

    def get_error_count(self, obj: SyncRun) -> int:
        return len(obj.errors or [])


class SyncTriggerSerializer(serializers.Serializer):
    level = serializers.CharField(required=False, allow_blank=True, default="")
    student_id = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)

    def validate_level(self, value):
        try:
            return parse_level(value)
        except ValueError as exc:
            raise serializers.ValidationError(str(exc)) from exc


class ConnectionTestSerializer(serializers.Serializer):
    poll_id = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)
    person_id = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)


class SeguimientoConfigSerializer(serializers.ModelSerializer):
    school_year_name = serializers.CharField(source="school_year.name", read_only=True)

    class Meta:
        model = SeguimientoConfig
        fields = [
            "id",
            "poll_id",
            "name",
            "description",
            "infraction_type",
            "academic_level",
            "school_year",
            "school_year_name",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        poll_id = attrs.get("poll_id", getattr(self.instance, "poll_id", None))
        school_year = attrs.get("school_year", getattr(self.instance, "school_year", None))
        is_active = attrs.get("is_active", getattr(self.instance, "is_active", True))

        if is_active and poll_id is not None and school_year is not None:
            duplicates = SeguimientoConfig.objects.filter(poll_id=poll_id, school_year=school_year, is_active=True)
            if self.instance is not None:
                duplicates = duplicates.exclude(pk=self.instance.pk)
            if duplicates.exists():
                raise serializers.ValidationError(
                    {"poll_id": "Ya existe una configuración activa con esta encuesta para el año escolar."}
                )

        return attrs
