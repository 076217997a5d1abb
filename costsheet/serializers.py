from django.conf import settings
from rest_framework import serializers

from .schedule import MAX_INSTALLMENTS, PlanType


def _default(key, fallback):
    return getattr(settings, "PAYMENT_SCHEDULE_DEFAULTS", {}).get(key, fallback)


class SchedulePreviewSerializer(serializers.Serializer):
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    plan_type = serializers.ChoiceField(choices=PlanType.choices)
    down_payment_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    installment_count = serializers.IntegerField(min_value=1, max_value=MAX_INSTALLMENTS, required=False)
    start_date = serializers.DateField(required=False)

    def validate(self, data):
        data.setdefault("down_payment_percent", _default("down_payment_percent", 20))
        data.setdefault("installment_count", _default("installment_count", 12))
        return data


class ScheduleItemInputSerializer(serializers.Serializer):
    milestone = serializers.CharField(max_length=200)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    due_date = serializers.DateField()
    editable = serializers.BooleanField(required=False, default=True)


class ScheduleItemSerializer(serializers.Serializer):
    sequence = serializers.IntegerField()
    milestone = serializers.CharField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    due_date = serializers.DateField()
    percentage = serializers.DecimalField(max_digits=7, decimal_places=4)
    editable = serializers.BooleanField()
