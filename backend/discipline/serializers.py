from __future__ import annotations

from rest_framework import serializers

from .cases import CASE_INFRACTION_TYPE
from .models import AlertSetting, FollowUp, Infraction


class InfractionSerializer(serializers.ModelSerializer):
    student_name = serializers.SerializerMethodField()
    follow_up_numbers = serializers.SerializerMethodField()

    class Meta:
        model = Infraction
        fields = [
            "id",
            "hash",
            "source",
            "external_id",
            "student",
            "student_code",
            "student_name",
            "school_year",
            "infraction_type",
            "number",
            "description",
            "detail",
            "remedial_actions",
            "author",
            "occurred_at",
            "trimester",
            "trimester_name",
            "level",
            "section",
            "has_diagnosis",
            "observations",
            "observations_author",
            "observations_at",
            "external_created_at",
            "external_edited_at",
            "attended",
            "attended_at",
            "follow_up_numbers",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_student_name(self, obj: Infraction) -> str | None:
        student = obj.student if obj.student_id else None
        return student.full_name if student else None

    def get_follow_up_numbers(self, obj: Infraction) -> list[int]:
        return sorted(follow_up.number for follow_up in obj.follow_ups.all())


class InfractionObservationsSerializer(serializers.Serializer):
    observations = serializers.CharField(allow_blank=True)


class FollowUpSerializer(serializers.ModelSerializer):
    infraction = serializers.SlugRelatedField(slug_field="hash", queryset=Infraction.objects.all())

    class Meta:
        model = FollowUp
        fields = ["id", "infraction", "number", "date", "details", "author", "created_by", "created_at", "updated_at"]
        read_only_fields = ["id", "created_by", "created_at", "updated_at"]

    def validate(self, attrs):
        infraction = attrs.get("infraction", getattr(self.instance, "infraction", None))
        number = attrs.get("number", getattr(self.instance, "number", None))

        if infraction is not None and infraction.infraction_type != CASE_INFRACTION_TYPE:
            raise serializers.ValidationError(
                {"infraction": "Solo las faltas Tipo II tienen seguimientos."}
            )

        if infraction is not None and number is not None:
            duplicates = FollowUp.objects.filter(infraction=infraction, number=number)
            if self.instance is not None:
                duplicates = duplicates.exclude(pk=self.instance.pk)
            if duplicates.exists():
                raise serializers.ValidationError(
                    {"number": f"El seguimiento {number} ya está registrado para esta falta."}
                )
        return attrs


class CaseSerializer(serializers.Serializer):
    infraction_id = serializers.IntegerField()
    infraction_hash = serializers.CharField()
    student_id = serializers.IntegerField(allow_null=True)
    student_name = serializers.CharField()
    section = serializers.CharField()
    grade = serializers.CharField()
    level = serializers.CharField()
    infraction_date = serializers.DateField()
    infraction_number = serializers.IntegerField(allow_null=True)
    description = serializers.CharField()
    status = serializers.CharField()
    completed = serializers.IntegerField()
    completed_numbers = serializers.ListField(child=serializers.IntegerField())
    expected_dates = serializers.ListField(child=serializers.DateField())
    pending = serializers.IntegerField()
    closed = serializers.BooleanField()
    next_number = serializers.IntegerField(allow_null=True)
    next_date = serializers.DateField(allow_null=True)
    overdue = serializers.BooleanField()


class StudentAlertSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()
    student_name = serializers.CharField()
    grade = serializers.CharField()
    level = serializers.CharField()
    type_i_count = serializers.IntegerField()
    type_ii_count = serializers.IntegerField()
    alert = serializers.CharField()


class AlertSettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = AlertSetting
        fields = ["id", "level", "primary_threshold", "secondary_threshold", "updated_at"]
        read_only_fields = ["id", "updated_at"]

    def validate(self, attrs):
        primary = attrs.get("primary_threshold", getattr(self.instance, "primary_threshold", None))
        secondary = attrs.get("secondary_threshold", getattr(self.instance, "secondary_threshold", None))
        if primary is not None and secondary is not None and secondary < primary:
            raise serializers.ValidationError(
                {"secondary_threshold": "El umbral crítico debe ser mayor o igual al de advertencia."}
            )
        return attrs
