# booking/models.py
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from common.models import TimeStamped
from costsheet.schedule import PlanType


MONEY = dict(max_digits=14, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])


class NegotiationStatus(models.TextChoices):
    PENDING     = "pending", "Pending"
    NEGOTIATING = "negotiating", "Negotiating"
    APPROVED    = "approved", "Approved"
    REJECTED    = "rejected", "Rejected"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID    = "paid", "Paid"
    OVERDUE = "overdue", "Overdue"
    PARTIAL = "partial", "Partial"


class Negotiation(TimeStamped):
    """
    Price discussion for a lead, optionally on a specific unit.
    pending -> negotiating -> approved | rejected. Approval creates the Booking.
    """
    lead = models.ForeignKey("salelead.Lead", on_delete=models.CASCADE, related_name="negotiations")
    unit = models.ForeignKey(
        "clientsetup.Unit", on_delete=models.SET_NULL, null=True, blank=True, related_name="negotiations"
    )
    project = models.ForeignKey(
        "clientsetup.Project", on_delete=models.SET_NULL, null=True, blank=True, related_name="negotiations"
    )

    status = models.CharField(max_length=16, choices=NegotiationStatus.choices, default=NegotiationStatus.PENDING)

    base_price = models.DecimalField(default=Decimal("0.00"), **MONEY)
    requested_price = models.DecimalField(null=True, blank=True, **MONEY)
    offered_price = models.DecimalField(
        null=True, blank=True, help_text="Counter offer from the sales side", **MONEY
    )
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("-100")), MaxValueValidator(Decimal("100"))],
    )
    token_amount = models.DecimalField(default=Decimal("0.00"), **MONEY)
    payment_plan = models.CharField(max_length=16, choices=PlanType.choices, default=PlanType.CLP)
    is_token_ready = models.BooleanField(default=False)

    notes = models.TextField(blank=True)
    admin_notes = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="negotiations_created",
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="negotiations_approved",
    )
    booking = models.OneToOneField(
        "booking.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="negotiation",
    )

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["status"])]

    def __str__(self):
        return f"Negotiation #{self.pk} ({self.status})"

    @property
    def negotiated_price(self):
        if self.offered_price is not None:
            return self.offered_price
        return self.requested_price


class Booking(TimeStamped):
    lead = models.ForeignKey("salelead.Lead", on_delete=models.PROTECT, related_name="bookings")
    unit = models.ForeignKey("clientsetup.Unit", on_delete=models.PROTECT, related_name="bookings")
    project = models.ForeignKey("clientsetup.Project", on_delete=models.PROTECT, related_name="bookings")
    sales_person = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )

    form_ref_no = models.CharField(max_length=32, blank=True, db_index=True)

    token_amount = models.DecimalField(default=Decimal("0.00"), **MONEY)
    total_amount = models.DecimalField(**MONEY)
    discount_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"),
        help_text="total_amount - final_amount",
    )
    final_amount = models.DecimalField(**MONEY)
    payment_plan = models.CharField(max_length=16, choices=PlanType.choices, default=PlanType.CLP)

    booking_date = models.DateField(default=timezone.localdate)
    agreement_date = models.DateField(null=True, blank=True)
    possession_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["-booking_date", "-id"]
        indexes = [
            models.Index(fields=["project", "booking_date"]),
        ]

    def __str__(self):
        return f"Booking {self.form_ref_no or self.pk} / {self.unit}"

    def save(self, *args, **kwargs):
        is_new = self.pk is None

        super().save(*args, **kwargs)

        if is_new and not self.form_ref_no:
            ref = f"BKG-{self.project_id}-{self.pk:06d}"
            Booking.objects.filter(pk=self.pk).update(form_ref_no=ref)
            self.form_ref_no = ref


class Payment(TimeStamped):
    """
    One row of a booking's payment schedule.
    """
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    sequence = models.PositiveIntegerField(default=1)
    milestone = models.CharField(max_length=200, blank=True)
    amount = models.DecimalField(**MONEY)
    paid_amount = models.DecimalField(default=Decimal("0.00"), **MONEY)
    due_date = models.DateField()
    # false for placeholders such as the subvention construction-phase row
    editable = models.BooleanField(default=True)
    paid_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_method = models.CharField(max_length=50, blank=True)
    transaction_ref = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ["booking_id", "sequence", "due_date"]
        indexes = [
            models.Index(fields=["status", "due_date"]),
        ]

    def __str__(self):
        return f"Payment #{self.pk} {self.milestone} ({self.status})"

    @property
    def balance(self):
        return self.amount - self.paid_amount


class BookingStatusHistory(TimeStamped):
    """
    Audit log for a booking: creation, schedule changes and receipts.
    """

    ACTION_CHOICES = [
        ("CREATE", "Create"),
        ("SCHEDULE", "Schedule Saved"),
        ("PAYMENT", "Payment Recorded"),
        ("MANUAL_UPDATE", "Manual Update"),
    ]

    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    action = models.CharField(
        max_length=20,
        choices=ACTION_CHOICES,
        default="MANUAL_UPDATE",
    )
    reason = models.CharField(max_length=255, blank=True)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="booking_status_changes",
    )

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Booking#{self.booking_id}: {self.action}"
