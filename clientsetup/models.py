# clientsetup/models.py
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Count, Q

from common.models import TimeStamped


class ProjectStatus(models.TextChoices):
    PRE_LAUNCH = "pre_launch", "Pre Launch"
    ACTIVE     = "active", "Active"
    SOLD_OUT   = "sold_out", "Sold Out"
    COMPLETED  = "completed", "Completed"


class PropertyType(models.TextChoices):
    FLAT      = "flat", "Flat"
    BUNGALOW  = "bungalow", "Bungalow"
    ROW_HOUSE = "row_house", "Row House"
    SHOP      = "shop", "Shop"
    OFFICE    = "office", "Office"


class UnitStatus(models.TextChoices):
    AVAILABLE = "available", "Available"
    BLOCKED   = "blocked", "Blocked"
    BOOKED    = "booked", "Booked"
    SOLD      = "sold", "Sold"


MONEY = dict(max_digits=14, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])


class Project(TimeStamped):
    name = models.CharField(max_length=200)
    location = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    developer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="developed_projects",
        help_text="User who created the project",
    )

    total_units = models.PositiveIntegerField(default=0)
    # Derived from Unit rows on every unit transition (see refresh_unit_counts)
    available_units = models.PositiveIntegerField(default=0)
    blocked_units = models.PositiveIntegerField(default=0)
    sold_units = models.PositiveIntegerField(default=0)

    base_price = models.DecimalField(default=Decimal("0.00"), **MONEY)
    status = models.CharField(max_length=16, choices=ProjectStatus.choices, default=ProjectStatus.PRE_LAUNCH)
    possession_date = models.DateField(null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=["status"])]
        ordering = ["name"]

    def __str__(self):
        return self.name

    @classmethod
    def refresh_unit_counts(cls, project_id):
        """
        Re-derive available / blocked / sold counts from the actual Unit rows.
        sold_units counts booked + sold units.
        """
        agg = Unit.objects.filter(project_id=project_id).aggregate(
            available=Count("id", filter=Q(status=UnitStatus.AVAILABLE)),
            blocked=Count("id", filter=Q(status=UnitStatus.BLOCKED)),
            sold=Count("id", filter=Q(status__in=[UnitStatus.BOOKED, UnitStatus.SOLD])),
        )
        cls.objects.filter(pk=project_id).update(
            available_units=agg["available"],
            blocked_units=agg["blocked"],
            sold_units=agg["sold"],
        )
        return agg


class Tower(TimeStamped):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="towers")
    name = models.CharField(max_length=100)
    floors = models.PositiveIntegerField(default=0)
    units_per_floor = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ("project", "name")
        ordering = ["project__name", "name"]

    def __str__(self):
        return f"{self.project.name} - {self.name}"


class Unit(TimeStamped):
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="units")
    tower = models.ForeignKey(Tower, on_delete=models.CASCADE, related_name="units")
    unit_number = models.CharField(max_length=50)
    floor = models.IntegerField(default=0)
    property_type = models.CharField(max_length=16, choices=PropertyType.choices, default=PropertyType.FLAT)
    size = models.DecimalField("Size (sq.ft)", max_digits=10, decimal_places=2, null=True, blank=True)

    # Pricing
    base_rate = models.DecimalField(default=Decimal("0.00"), **MONEY)
    plc = models.DecimalField("Preferential Location Charge", default=Decimal("0.00"), **MONEY)
    gst = models.DecimalField("GST", default=Decimal("0.00"), **MONEY)
    stamp_duty = models.DecimalField(default=Decimal("0.00"), **MONEY)
    total_price = models.DecimalField(default=Decimal("0.00"), **MONEY)

    status = models.CharField(max_length=16, choices=UnitStatus.choices, default=UnitStatus.AVAILABLE)
    view = models.CharField(max_length=100, blank=True)
    facing = models.CharField(max_length=50, blank=True)

    blocked_at = models.DateTimeField(null=True, blank=True)
    block_expiry_at = models.DateTimeField(
        null=True, blank=True,
        help_text="When the block ends. After this the unit becomes AVAILABLE again."
    )
    blocked_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="units_blocked",
    )

    class Meta:
        unique_together = ("tower", "unit_number")
        indexes = [
            models.Index(fields=["project", "status"]),
            models.Index(fields=["status", "block_expiry_at"]),
        ]
        ordering = ["tower_id", "floor", "unit_number"]

    def __str__(self):
        return f"{self.tower.name}-{self.unit_number}"

    def compute_total_price(self):
        amount = Decimal("0.00")
        for x in [self.base_rate, self.plc, self.gst, self.stamp_duty]:
            if x:
                amount += Decimal(x)
        return amount

    def save(self, *args, **kwargs):
        # Unit always belongs to its tower's project
        if self.tower_id:
            self.project_id = self.tower.project_id

        self.total_price = self.compute_total_price()

        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"total_price", "project", "updated_at"}

        super().save(*args, **kwargs)


class UnitStatusHistory(TimeStamped):
    unit = models.ForeignKey(Unit, on_delete=models.CASCADE, related_name="status_history")
    old_status = models.CharField(max_length=16, choices=UnitStatus.choices)
    new_status = models.CharField(max_length=16, choices=UnitStatus.choices)
    reason = models.CharField(max_length=255, blank=True)
    changed_by = models.ForeignKey(settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL)

    class Meta:
        ordering = ["-created_at", "-id"]
