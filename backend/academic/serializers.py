from rest_framework import serializers

from .models import SchoolYear, Trimester


class TrimesterSerializer(serializers.ModelSerializer):
    class Meta:
        model = Trimester
        fields = ["id", "school_year", "name", "order", "start_date", "end_date"]
        read_only_fields = ["id"]

    def validate(self, data):
        start_date = data.get("start_date", getattr(self.instance, "start_date", None))
        end_date = data.get("end_date", getattr(self.instance, "end_date", None))

        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError(
                {"end_date": "La fecha de fin debe ser posterior a la fecha de inicio."}
            )

        school_year = data.get("school_year", getattr(self.instance, "school_year", None))
        if school_year is not None and start_date and end_date:
            if start_date < school_year.start_date or end_date > school_year.end_date:
                raise serializers.ValidationError(
                    "Las fechas del trimestre deben estar dentro del año escolar."
                )
        return data


class SchoolYearSerializer(serializers.ModelSerializer):
    trimesters = TrimesterSerializer(many=True, read_only=True)

    class Meta:
        model = SchoolYear
        fields = ["id", "name", "start_date", "end_date", "is_active", "trimesters", "created_at", "updated_at"]
        read_only_fields = ["id", "trimesters", "created_at", "updated_at"]

    def validate(self, data):
        start_date = data.get("start_date", getattr(self.instance, "start_date", None))
        end_date = data.get("end_date", getattr(self.instance, "end_date", None))
        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError(
                {"end_date": "La fecha de fin debe ser posterior a la fecha de inicio."}
            )
        return data
