# channel/views.py
import logging

from django.db import IntegrityError, transaction
from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounts.context import RequestContext
from accounts.permissions import IsManagerRole
from common.exceptions import ConflictError, ValidationError

from .models import ChannelPartner, ChannelPartnerLead
from .serializers import ChannelPartnerLeadSerializer, ChannelPartnerSerializer
from .utils import compute_commission

logger = logging.getLogger(__name__)


class ChannelPartnerViewSet(viewsets.ModelViewSet):
    """
    GET    /api/channel-partners/?is_active=&kyc_status=&search=
    POST   /api/channel-partners/
    GET    /api/channel-partners/{id}/
    PUT    /api/channel-partners/{id}/
    PATCH  /api/channel-partners/{id}/
    """
    serializer_class = ChannelPartnerSerializer
    permission_classes = [IsAuthenticated]
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_queryset(self):
        qs = ChannelPartner.objects.annotate(
            leads_count=Count("lead_links", distinct=True),
            total_commission=Coalesce(
                Sum("lead_links__commission_amount"),
                Value(0),
                output_field=DecimalField(max_digits=14, decimal_places=2),
            ),
        )

        p = self.request.query_params
        is_active = p.get("is_active")
        if is_active is not None:
            qs = qs.filter(is_active=is_active.lower() in ("1", "true", "yes"))
        if kyc := p.get("kyc_status"):
            qs = qs.filter(kyc_status=kyc)
        if search := p.get("search"):
            qs = qs.filter(
                Q(name__icontains=search) | Q(company_name__icontains=search) | Q(phone__icontains=search)
            )
        return qs.order_by("name")

    def perform_create(self, serializer):
        ctx = RequestContext.from_request(self.request)
        partner = serializer.save(created_by_id=ctx.user_id)
        logger.info("Channel partner %s created by user %s", partner.pk, ctx.user_id)


class ChannelPartnerLeadViewSet(viewsets.ModelViewSet):
    """
    GET  /api/channel-partners/{partner_id}/leads/
    POST /api/channel-partners/{partner_id}/leads/                  body: {lead}
    POST /api/channel-partners/{partner_id}/leads/{id}/mark-paid/   (manager roles)
    """
    serializer_class = ChannelPartnerLeadSerializer
    permission_classes = [IsAuthenticated]
    http_method_names = ["get", "post", "delete", "head", "options"]

    def get_permissions(self):
        if self.action in ("mark_paid", "destroy"):
            return [IsAuthenticated(), IsManagerRole()]
        return super().get_permissions()

    def get_queryset(self):
        return (
            ChannelPartnerLead.objects
            .filter(partner_id=self.kwargs.get("partner_pk"))
            .select_related("lead", "partner", "booking")
        )

    def perform_create(self, serializer):
        partner = get_object_or_404(ChannelPartner, pk=self.kwargs.get("partner_pk"))
        if not partner.is_active:
            raise ValidationError("Channel partner is inactive.", field="partner")

        lead = serializer.validated_data["lead"]
        booking = lead.bookings.order_by("-id").first()
        extra = {"partner": partner}
        if booking is not None:
            # lead already booked: commission is known right away
            extra["booking"] = booking
            extra["commission_amount"] = compute_commission(booking.final_amount, partner.commission_rate)

        try:
            with transaction.atomic():
                link = serializer.save(**extra)
        except IntegrityError:
            raise ValidationError("Lead is already attributed to this partner.", field="lead")
        logger.info("Lead %s attributed to partner %s", lead.pk, partner.pk)
        return link

    def perform_destroy(self, instance):
        if instance.is_paid:
            raise ConflictError(attempted="remove attribution", current_status="paid")
        instance.delete()

    @action(detail=True, methods=["post"], url_path="mark-paid")
    def mark_paid(self, request, partner_pk=None, pk=None):
        link = self.get_object()
        if link.booking_id is None:
            raise ConflictError(
                "Cannot pay commission before the lead books.",
                attempted="mark commission paid",
                current_status="not_booked",
            )

        updated = (
            ChannelPartnerLead.objects
            .filter(pk=link.pk, is_paid=False)
            .update(is_paid=True, paid_at=timezone.now(), updated_at=timezone.now())
        )
        if not updated:
            raise ConflictError(attempted="mark commission paid", current_status="paid")

        link.refresh_from_db()
        return Response(self.get_serializer(link).data, status=status.HTTP_200_OK)
