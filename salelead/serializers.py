from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import Communication, Lead, LeadActivity

User = get_user_model()


class LeadSerializer(serializers.ModelSerializer):
    assigned_to_name = serializers.SerializerMethodField()
    project_name = serializers.CharField(source="project.name", read_only=True, default=None)

    class Meta:
        model = Lead
        fields = [
            "id", "name", "phone", "email",
            "source", "status",
            "project", "project_name",
            "assigned_to", "assigned_to_name", "created_by",
            "budget", "notes", "last_contacted_at",
            "created_at", "updated_at",
        ]
        read_only_fields = ["id", "created_by", "last_contacted_at", "created_at", "updated_at"]
        extra_kwargs = {"assigned_to": {"required": False}}

    def get_assigned_to_name(self, obj):
        return str(obj.assigned_to) if obj.assigned_to_id else None

    def validate_phone(self, value):
        digits = "".join(ch for ch in value if ch.isdigit())
        if len(digits) < 10:
            raise serializers.ValidationError("Enter a valid phone number.")
        return value.strip()

    def validate_budget(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Budget cannot be negative.")
        return value


class LeadActivitySerializer(serializers.ModelSerializer):
    created_by_name = serializers.SerializerMethodField()

    class Meta:
        model = LeadActivity
        fields = [
            "id", "lead", "activity_type", "title", "info", "event_date",
            "created_by", "created_by_name", "created_at",
        ]
        read_only_fields = ["id", "lead", "created_by", "created_at"]

    def get_created_by_name(self, obj):
        return str(obj.created_by) if obj.created_by_id else None


class CommunicationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Communication
        fields = [
            "id", "lead", "type", "subject", "content",
            "scheduled_at", "completed_at", "created_by", "created_at",
        ]
        read_only_fields = ["id", "created_by", "created_at"]
