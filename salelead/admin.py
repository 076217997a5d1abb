from django.contrib import admin

from .models import Communication, Lead, LeadActivity


class LeadActivityInline(admin.TabularInline):
    model = LeadActivity
    extra = 0


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "phone", "source", "status", "project", "assigned_to", "created_at")
    list_filter = ("status", "source", "project")
    search_fields = ("name", "phone", "email")
    inlines = [LeadActivityInline]


@admin.register(Communication)
class CommunicationAdmin(admin.ModelAdmin):
    list_display = ("id", "lead", "type", "subject", "created_by", "created_at")
    list_filter = ("type",)
