from django.contrib import admin

from .models import ChannelPartner, ChannelPartnerLead


@admin.register(ChannelPartner)
class ChannelPartnerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "company_name", "phone", "commission_rate", "kyc_status", "is_active")
    list_filter = ("kyc_status", "is_active")
    search_fields = ("name", "company_name", "phone", "referral_code")
    readonly_fields = ("referral_code",)


@admin.register(ChannelPartnerLead)
class ChannelPartnerLeadAdmin(admin.ModelAdmin):
    list_display = ("id", "partner", "lead", "booking", "commission_amount", "is_paid", "paid_at")
    list_filter = ("is_paid",)
