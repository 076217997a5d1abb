from django.contrib import admin

from .models import Project, Tower, Unit, UnitStatusHistory


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "location", "status", "total_units", "available_units", "blocked_units", "sold_units")
    list_filter = ("status",)
    search_fields = ("name", "location")
    readonly_fields = ("available_units", "blocked_units", "sold_units")


@admin.register(Tower)
class TowerAdmin(admin.ModelAdmin):
    list_display = ("id", "project", "name", "floors", "units_per_floor")
    list_filter = ("project",)


@admin.register(Unit)
class UnitAdmin(admin.ModelAdmin):
    list_display = ("id", "project", "tower", "unit_number", "floor", "property_type", "status", "total_price")
    list_filter = ("project", "tower", "status", "property_type")
    search_fields = ("unit_number",)
    # status only changes through clientsetup.lifecycle
    readonly_fields = ("total_price", "status", "blocked_at", "block_expiry_at", "blocked_by")


@admin.register(UnitStatusHistory)
class UnitStatusHistoryAdmin(admin.ModelAdmin):
    list_display = ("id", "unit", "old_status", "new_status", "reason", "changed_by", "created_at")
    list_filter = ("new_status",)
