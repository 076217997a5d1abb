from rest_framework import serializers

from .models import ChannelPartner, ChannelPartnerLead


class ChannelPartnerSerializer(serializers.ModelSerializer):
    leads_count = serializers.IntegerField(read_only=True, default=0)
    total_commission = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True, default=0)

    class Meta:
        model = ChannelPartner
        fields = [
            "id", "name", "company_name", "phone", "email",
            "commission_rate", "kyc_status", "is_active", "referral_code",
            "leads_count", "total_commission",
            "created_by", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "referral_code", "created_by", "created_at", "updated_at"]

    def validate_phone(self, value):
        digits = "".join(ch for ch in value if ch.isdigit())
        if len(digits) < 10:
            raise serializers.ValidationError("Enter a valid phone number.")
        return value.strip()


class ChannelPartnerLeadSerializer(serializers.ModelSerializer):
    lead_name = serializers.CharField(source="lead.name", read_only=True)
    lead_status = serializers.CharField(source="lead.status", read_only=True)

    class Meta:
        model = ChannelPartnerLead
        fields = [
            "id", "partner", "lead", "lead_name", "lead_status",
            "booking", "commission_amount", "is_paid", "paid_at",
            "created_at",
        ]
        read_only_fields = [
            "id", "partner", "booking", "commission_amount", "is_paid", "paid_at", "created_at",
        ]
