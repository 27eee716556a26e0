from rest_framework import serializers

from .models import Student


class StudentSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(read_only=True)
    guardian_name = serializers.SerializerMethodField()

    class Meta:
        model = Student
        fields = [
            "id",
            "first_name",
            "last_name",
            "full_name",
            "rut",
            "course_name",
            "guardian",
            "guardian_name",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def get_guardian_name(self, obj: Student) -> str:
        return obj.guardian.get_full_name() if obj.guardian_id else ""

    def validate_rut(self, value):
        return (value or "").strip().upper()
