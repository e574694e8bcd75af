from rest_framework import serializers

from .models import Student


class StudentSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)
    level = serializers.CharField(read_only=True)

    class Meta:
        model = Student
        fields = [
            "id",
            "school_year",
            "code",
            "first_name",
            "last_name",
            "full_name",
            "grade",
            "section",
            "level",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "full_name", "level", "created_at", "updated_at"]
