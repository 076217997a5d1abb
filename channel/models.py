# channel/models.py
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from common.models import TimeStamped


class KycStatus(models.TextChoices):
    PENDING  = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"


class ChannelPartner(TimeStamped):
    name = models.CharField(max_length=200)
    company_name = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=32)
    email = models.EmailField(null=True, blank=True)

    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Commission % on booking value, e.g. 2.00 = 2%",
    )
    kyc_status = models.CharField(max_length=10, choices=KycStatus.choices, default=KycStatus.PENDING)
    is_active = models.BooleanField(default=True)
    referral_code = models.CharField(max_length=20, unique=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="channel_partners_created",
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.company_name or self.name

    def save(self, *args, **kwargs):
        if not self.referral_code:
            from .utils import generate_unique_referral_code
            self.referral_code = generate_unique_referral_code()
        super().save(*args, **kwargs)


class ChannelPartnerLead(TimeStamped):
    """
    Attribution of a lead to a channel partner. Commission is fixed once the
    lead books, from the booking's final amount and the partner's rate.
    """
    partner = models.ForeignKey(ChannelPartner, on_delete=models.CASCADE, related_name="lead_links")
    lead = models.ForeignKey("salelead.Lead", on_delete=models.CASCADE, related_name="partner_links")
    booking = models.ForeignKey(
        "booking.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="partner_links",
    )
    commission_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("partner", "lead")
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.partner} -> {self.lead}"
