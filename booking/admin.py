from django.contrib import admin

from .models import Booking, BookingStatusHistory, Negotiation, Payment


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("paid_amount", "paid_date", "status", "editable")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "form_ref_no", "project", "unit", "lead", "final_amount", "payment_plan", "booking_date")
    list_filter = ("project", "payment_plan")
    search_fields = ("form_ref_no", "lead__name", "unit__unit_number")
    readonly_fields = ("form_ref_no", "unit", "lead", "project")
    inlines = [PaymentInline]


@admin.register(Negotiation)
class NegotiationAdmin(admin.ModelAdmin):
    list_display = ("id", "lead", "unit", "status", "base_price", "requested_price", "offered_price", "discount_percent")
    list_filter = ("status", "payment_plan")
    readonly_fields = ("booking", "approved_by")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "sequence", "milestone", "amount", "paid_amount", "due_date", "status")
    list_filter = ("status",)


admin.site.register(BookingStatusHistory)
