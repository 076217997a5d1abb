# dashboard/views.py

import logging
from datetime import date
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.db.models import Count, F, Q, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.context import RequestContext
from accounts.models import Role
from booking.models import Booking, Payment, PaymentStatus
from channel.models import ChannelPartner
from clientsetup.models import Project, Unit, UnitStatus
from salelead.models import LeadSource, LeadStatus
from salelead.utils import leads_for_context

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# =====================================================
# Scope helpers
# =====================================================

def _scoped(ctx, request):
    """
    (leads_qs, bookings_qs) visible to the caller, optionally narrowed to ?project_id=.
    master / developer_hq see every booking; others see bookings of their visible leads.
    """
    leads = leads_for_context(ctx)
    bookings = Booking.objects.all()

    if ctx.role not in (Role.MASTER, Role.DEVELOPER_HQ):
        bookings = bookings.filter(lead_id__in=leads.values("id"))

    project_id = request.query_params.get("project_id")
    if project_id:
        leads = leads.filter(project_id=project_id)
        bookings = bookings.filter(project_id=project_id)
    return leads, bookings


def _count_map(qs, field, choices):
    counts = {row[field]: row["n"] for row in qs.values(field).annotate(n=Count("id"))}
    return {value: counts.get(value, 0) for value in choices}


def _month_key(value):
    return value.strftime("%Y-%m")


# =====================================================
# Views
# =====================================================

class DashboardMetricsView(APIView):
    """
    GET /api/dashboard/metrics/?project_id=
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ctx = RequestContext.from_request(request)
        leads, bookings = _scoped(ctx, request)

        units = Unit.objects.filter(status__in=[UnitStatus.BOOKED, UnitStatus.SOLD])
        if project_id := request.query_params.get("project_id"):
            units = units.filter(project_id=project_id)

        data = {
            "total_leads": leads.count(),
            "conversions": bookings.count(),
            "revenue": bookings.aggregate(s=Sum("final_amount"))["s"] or ZERO,
            "units_sold": units.count(),
            "leads_by_status": _count_map(leads, "status", LeadStatus.values),
            "leads_by_source": _count_map(leads, "source", LeadSource.values),
        }
        return Response(data)


class DashboardProjectsView(APIView):
    """
    GET /api/dashboard/projects/
    Inventory per project, counted from the unit rows themselves.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        unit_stats = {
            row["project_id"]: row
            for row in (
                Unit.objects.values("project_id").annotate(
                    units=Count("id"),
                    available=Count("id", filter=Q(status=UnitStatus.AVAILABLE)),
                    blocked=Count("id", filter=Q(status=UnitStatus.BLOCKED)),
                    booked=Count("id", filter=Q(status=UnitStatus.BOOKED)),
                    sold=Count("id", filter=Q(status=UnitStatus.SOLD)),
                )
            )
        }
        revenue = {
            row["project_id"]: row["revenue"]
            for row in Booking.objects.values("project_id").annotate(revenue=Sum("final_amount"))
        }

        out = []
        for project in Project.objects.order_by("name"):
            stats = unit_stats.get(project.pk, {})
            out.append({
                "id": project.pk,
                "name": project.name,
                "status": project.status,
                "total_units": project.total_units or stats.get("units", 0),
                "available_units": stats.get("available", 0),
                "blocked_units": stats.get("blocked", 0),
                "booked_units": stats.get("booked", 0),
                "sold_units": stats.get("booked", 0) + stats.get("sold", 0),
                "revenue": revenue.get(project.pk) or ZERO,
            })
        return Response(out)


class DashboardPaymentsView(APIView):
    """
    GET /api/dashboard/payments/?project_id=
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        qs = Payment.objects.all()
        if project_id := request.query_params.get("project_id"):
            qs = qs.filter(booking__project_id=project_id)

        rows = {
            row["status"]: row
            for row in qs.values("status").annotate(
                count=Count("id"), amount=Sum("amount"), received=Sum("paid_amount")
            )
        }

        by_status = {}
        for value in PaymentStatus.values:
            row = rows.get(value, {})
            by_status[value] = {
                "count": row.get("count", 0),
                "amount": row.get("amount") or ZERO,
                "received": row.get("received") or ZERO,
            }

        scheduled = sum((v["amount"] for v in by_status.values()), ZERO)
        received = sum((v["received"] for v in by_status.values()), ZERO)
        return Response({
            "by_status": by_status,
            "total_scheduled": scheduled,
            "total_received": received,
            "outstanding": scheduled - received,
        })


class DashboardPartnersView(APIView):
    """
    GET /api/dashboard/partners/   top channel partners by commission earned
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        qs = (
            ChannelPartner.objects
            .annotate(
                leads_count=Count("lead_links", distinct=True),
                bookings_count=Count("lead_links", filter=Q(lead_links__booking__isnull=False), distinct=True),
                commission=Sum("lead_links__commission_amount"),
                commission_paid=Sum("lead_links__commission_amount", filter=Q(lead_links__is_paid=True)),
            )
            .order_by(F("commission").desc(nulls_last=True), "name")[:20]
        )
        return Response([
            {
                "id": p.pk,
                "name": str(p),
                "leads_count": p.leads_count,
                "bookings_count": p.bookings_count,
                "commission": p.commission or ZERO,
                "commission_paid": p.commission_paid or ZERO,
            }
            for p in qs
        ])


class DashboardTrendView(APIView):
    """
    GET /api/dashboard/trend/?months=6&project_id=
    Monthly leads, conversions and revenue, oldest month first.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        try:
            months = int(request.query_params.get("months", 6))
        except (TypeError, ValueError):
            months = 6
        months = max(1, min(months, 24))

        ctx = RequestContext.from_request(request)
        leads, bookings = _scoped(ctx, request)

        today = timezone.localdate()
        first = date(today.year, today.month, 1) - relativedelta(months=months - 1)
        keys = [_month_key(first + relativedelta(months=i)) for i in range(months)]
        buckets = {k: {"month": k, "leads": 0, "conversions": 0, "revenue": ZERO} for k in keys}

        lead_rows = (
            leads.filter(created_at__date__gte=first)
            .annotate(m=TruncMonth("created_at"))
            .values("m")
            .annotate(n=Count("id"))
        )
        for row in lead_rows:
            key = _month_key(row["m"])
            if key in buckets:
                buckets[key]["leads"] = row["n"]

        booking_rows = (
            bookings.filter(booking_date__gte=first)
            .annotate(m=TruncMonth("booking_date"))
            .values("m")
            .annotate(n=Count("id"), revenue=Sum("final_amount"))
        )
        for row in booking_rows:
            key = _month_key(row["m"])
            if key in buckets:
                buckets[key]["conversions"] = row["n"]
                buckets[key]["revenue"] = row["revenue"] or ZERO

        return Response([buckets[k] for k in keys])
