# salelead/models.py
from django.conf import settings
from django.db import models
from django.utils import timezone

from common.models import TimeStamped


class LeadSource(models.TextChoices):
    ACRES_99    = "99acres", "99acres"
    MAGICBRICKS = "magicbricks", "MagicBricks"
    WEBSITE     = "website", "Website"
    WALK_IN     = "walk_in", "Walk In"
    BROKER      = "broker", "Broker"
    GOOGLE_ADS  = "google_ads", "Google Ads"
    META_ADS    = "meta_ads", "Meta Ads"
    REFERRAL    = "referral", "Referral"


class LeadStatus(models.TextChoices):
    NEW         = "new", "New"
    CONTACTED   = "contacted", "Contacted"
    SITE_VISIT  = "site_visit", "Site Visit"
    NEGOTIATION = "negotiation", "Negotiation"
    BOOKING     = "booking", "Booking"
    SALE        = "sale", "Sale"
    POST_SALES  = "post_sales", "Post Sales"
    LOST        = "lost", "Lost"
    INACTIVE    = "inactive", "Inactive"


# Forward order of the sales funnel; lost / inactive sit outside it.
LEAD_FUNNEL = [
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.SITE_VISIT,
    LeadStatus.NEGOTIATION,
    LeadStatus.BOOKING,
    LeadStatus.SALE,
    LeadStatus.POST_SALES,
]


class Lead(TimeStamped):
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=32)
    email = models.EmailField(null=True, blank=True)

    source = models.CharField(max_length=20, choices=LeadSource.choices, default=LeadSource.WALK_IN)
    status = models.CharField(max_length=20, choices=LeadStatus.choices, default=LeadStatus.NEW)

    project = models.ForeignKey(
        "clientsetup.Project",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="leads",
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_leads",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_leads",
    )

    budget = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    notes = models.TextField(blank=True)
    last_contacted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["assigned_to", "status"]),
        ]

    def __str__(self):
        return f"{self.name} ({self.phone})"

    def advance_status(self, target):
        """
        Move forward along LEAD_FUNNEL to `target`. Leads already at or past
        `target`, or outside the funnel, are left alone. Returns True if moved.
        """
        if self.status not in LEAD_FUNNEL or LEAD_FUNNEL.index(self.status) >= LEAD_FUNNEL.index(target):
            return False

        moved = Lead.objects.filter(pk=self.pk, status=self.status).update(
            status=target, updated_at=timezone.now()
        )
        if moved:
            self.status = target
        return bool(moved)


class LeadActivity(TimeStamped):
    TYPE_CHOICES = [
        ("FOLLOW_UP", "Follow Up"),
        ("NOTE", "Note"),
        ("CALL", "Call Log"),
        ("SITE_VISIT", "Site Visit"),
        ("STATUS_CHANGE", "Status Change"),
        ("OTHER", "Other"),
    ]

    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name="activities")
    activity_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default="NOTE")
    title = models.CharField(max_length=150)
    info = models.TextField(blank=True)
    event_date = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="lead_activities_created",
    )

    class Meta:
        ordering = ["-event_date", "-id"]

    def __str__(self):
        return f"LeadActivity({self.activity_type}) -> {self.title}"


class CommunicationType(models.TextChoices):
    CALL       = "call", "Call"
    EMAIL      = "email", "Email"
    WHATSAPP   = "whatsapp", "WhatsApp"
    SMS        = "sms", "SMS"
    MEETING    = "meeting", "Meeting"
    SITE_VISIT = "site_visit", "Site Visit"


class Communication(TimeStamped):
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name="communications")
    type = models.CharField(max_length=16, choices=CommunicationType.choices)
    subject = models.CharField(max_length=200, blank=True)
    content = models.TextField(blank=True)
    scheduled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="communications",
    )

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.get_type_display()} with {self.lead.name}"
