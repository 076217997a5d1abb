from decimal import Decimal, InvalidOperation

from django.conf import settings
from rest_framework import serializers

from costsheet.schedule import MAX_INSTALLMENTS, PlanType
from costsheet.serializers import ScheduleItemInputSerializer

from .models import Booking, BookingStatusHistory, Negotiation, NegotiationStatus, Payment


class CommaDecimalField(serializers.DecimalField):
    """
    Accepts "48,00,000" / "4,800,000.50" as well as plain numbers.
    """

    def to_internal_value(self, data):
        if isinstance(data, str):
            data = data.replace(",", "").strip()
            if data == "":
                if self.allow_null:
                    return None
                self.fail("invalid")
        try:
            Decimal(str(data))
        except (InvalidOperation, TypeError, ValueError):
            self.fail("invalid")
        return super().to_internal_value(data)


def _money(**kwargs):
    return CommaDecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0"), **kwargs)


class NegotiationSerializer(serializers.ModelSerializer):
    lead_name = serializers.CharField(source="lead.name", read_only=True)
    unit_number = serializers.CharField(source="unit.unit_number", read_only=True, default=None)
    base_price = _money(required=False)
    requested_price = _money(required=False, allow_null=True)
    offered_price = _money(required=False, allow_null=True)
    token_amount = _money(required=False)
    status = serializers.ChoiceField(choices=NegotiationStatus.choices, required=False)

    class Meta:
        model = Negotiation
        fields = [
            "id", "lead", "lead_name", "unit", "unit_number", "project",
            "status", "base_price", "requested_price", "offered_price",
            "discount_percent", "token_amount", "payment_plan", "is_token_ready",
            "notes", "admin_notes",
            "created_by", "approved_by", "booking",
            "created_at", "updated_at",
        ]
        read_only_fields = ["id", "created_by", "approved_by", "booking", "created_at", "updated_at"]
        extra_kwargs = {"discount_percent": {"required": False}}

    def validate(self, data):
        if self.instance is not None and "lead" in data and data["lead"].pk != self.instance.lead_id:
            raise serializers.ValidationError({"lead": "Lead of a negotiation cannot be changed."})

        unit = data.get("unit")
        project = data.get("project")
        if unit is not None and project is not None and unit.project_id != project.pk:
            raise serializers.ValidationError({"unit": "Unit does not belong to the selected project."})
        return data


class PaymentSerializer(serializers.ModelSerializer):
    amount = _money()
    balance = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id", "booking", "sequence", "milestone",
            "amount", "paid_amount", "balance",
            "due_date", "paid_date", "status", "editable",
            "payment_method", "transaction_ref", "notes",
            "created_at", "updated_at",
        ]
        # status / paid_* move only through /record/ and the overdue sweep
        read_only_fields = [
            "id", "paid_amount", "paid_date", "status", "editable", "created_at", "updated_at",
        ]

    def validate(self, data):
        if self.instance is not None and "booking" in data and data["booking"].pk != self.instance.booking_id:
            raise serializers.ValidationError({"booking": "Payment cannot move to another booking."})
        return data


class PaymentRecordSerializer(serializers.Serializer):
    amount = _money()
    paid_date = serializers.DateField(required=False)
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=50)
    transaction_ref = serializers.CharField(required=False, allow_blank=True, max_length=100)


class BookingStatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = BookingStatusHistory
        fields = ["id", "action", "reason", "changed_by", "created_at"]


class BookingSerializer(serializers.ModelSerializer):
    lead_name = serializers.CharField(source="lead.name", read_only=True)
    unit_number = serializers.CharField(source="unit.unit_number", read_only=True)
    project_name = serializers.CharField(source="project.name", read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id", "form_ref_no",
            "lead", "lead_name", "unit", "unit_number", "project", "project_name",
            "sales_person",
            "token_amount", "total_amount", "discount_amount", "final_amount",
            "payment_plan", "booking_date", "agreement_date", "possession_date", "notes",
            "payments",
            "created_at", "updated_at",
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """
    Input for POST /api/bookings/. Ids are plain integers so a missing lead
    or unit comes back as 404 from the workflow, not as a field error.
    """
    lead = serializers.IntegerField()
    unit = serializers.IntegerField()
    payment_plan = serializers.ChoiceField(choices=PlanType.choices, default=PlanType.CLP)
    token_amount = _money(required=False)
    total_amount = _money(required=False)
    discount_amount = CommaDecimalField(max_digits=14, decimal_places=2, required=False)
    final_amount = _money(required=False)
    booking_date = serializers.DateField(required=False)
    agreement_date = serializers.DateField(required=False, allow_null=True)
    possession_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    schedule = ScheduleItemInputSerializer(many=True, required=False)


class BookingUpdateSerializer(serializers.ModelSerializer):
    """
    Amounts, unit and lead are fixed at booking time; only dates and notes change.
    """

    class Meta:
        model = Booking
        fields = ["agreement_date", "possession_date", "notes"]

    def validate(self, data):
        booking_date = self.instance.booking_date if self.instance else None
        for field in ("agreement_date", "possession_date"):
            value = data.get(field)
            if value and booking_date and value < booking_date:
                raise serializers.ValidationError({field: "Cannot be before the booking date."})
        return data


class BookingScheduleSerializer(serializers.Serializer):
    """
    Either `items` (hand-made schedule) or generator inputs.
    """
    items = ScheduleItemInputSerializer(many=True, required=False)
    plan_type = serializers.ChoiceField(choices=PlanType.choices, required=False)
    down_payment_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    installment_count = serializers.IntegerField(min_value=1, max_value=MAX_INSTALLMENTS, required=False)
    start_date = serializers.DateField(required=False)

    def validate(self, data):
        defaults = getattr(settings, "PAYMENT_SCHEDULE_DEFAULTS", {})
        data.setdefault("down_payment_percent", defaults.get("down_payment_percent", 20))
        data.setdefault("installment_count", defaults.get("installment_count", 12))
        if "items" in data and not data["items"]:
            raise serializers.ValidationError({"items": "Schedule must have at least one item."})
        return data
