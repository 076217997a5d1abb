# salelead/views.py
import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.context import RequestContext
from accounts.permissions import IsManagerRole
from common.exceptions import NotFoundError

from .models import Communication, Lead, LeadActivity, LeadStatus
from .serializers import CommunicationSerializer, LeadActivitySerializer, LeadSerializer
from .utils import leads_for_context

logger = logging.getLogger(__name__)


class LeadViewSet(viewsets.ModelViewSet):
    """
    /api/leads/?project_id=&status=&source=&search=
    /api/leads/{id}/
    /api/leads/status/{status}/
    /api/leads/{id}/activities/   [GET, POST]
    """
    serializer_class = LeadSerializer
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = r"\d+"

    def get_permissions(self):
        if self.action == "destroy":
            return [permissions.IsAuthenticated(), IsManagerRole()]
        return super().get_permissions()

    def get_queryset(self):
        ctx = RequestContext.from_request(self.request)
        qs = leads_for_context(
            ctx,
            Lead.objects.select_related("project", "assigned_to", "created_by"),
        )

        p = self.request.query_params
        if pid := p.get("project_id"):
            qs = qs.filter(project_id=pid)
        if status_val := p.get("status"):
            qs = qs.filter(status=status_val)
        if source := p.get("source"):
            qs = qs.filter(source=source)
        if search := p.get("search"):
            qs = qs.filter(
                Q(name__icontains=search) | Q(phone__icontains=search) | Q(email__icontains=search)
            )
        return qs.order_by("-created_at", "-id")

    def perform_create(self, serializer):
        ctx = RequestContext.from_request(self.request)
        extra = {"created_by_id": ctx.user_id}
        if serializer.validated_data.get("assigned_to") is None:
            extra["assigned_to_id"] = ctx.user_id
        lead = serializer.save(**extra)
        logger.info("Lead %s created by user %s", lead.pk, ctx.user_id)

    def perform_update(self, serializer):
        ctx = RequestContext.from_request(self.request)
        old_status = serializer.instance.status

        with transaction.atomic():
            lead = serializer.save()
            if lead.status != old_status:
                LeadActivity.objects.create(
                    lead=lead,
                    activity_type="STATUS_CHANGE",
                    title=f"Status changed: {old_status} -> {lead.status}",
                    created_by_id=ctx.user_id,
                )
        if lead.status != old_status:
            logger.info("Lead %s: %s -> %s by user %s", lead.pk, old_status, lead.status, ctx.user_id)

    @action(detail=False, methods=["get"], url_path=r"status/(?P<lead_status>[a-z_]+)")
    def by_status(self, request, lead_status=None):
        if lead_status not in LeadStatus.values:
            raise NotFoundError(f"Unknown lead status '{lead_status}'.")
        qs = self.get_queryset().filter(status=lead_status)
        return Response(self.get_serializer(qs, many=True).data)

    @action(detail=True, methods=["get", "post"], url_path="activities")
    def activities(self, request, pk=None):
        lead = self.get_object()

        if request.method == "GET":
            qs = lead.activities.select_related("created_by")
            return Response(LeadActivitySerializer(qs, many=True).data)

        ctx = RequestContext.from_request(request)
        ser = LeadActivitySerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        with transaction.atomic():
            activity = ser.save(lead=lead, created_by_id=ctx.user_id)
            Lead.objects.filter(pk=lead.pk).update(
                last_contacted_at=activity.event_date, updated_at=timezone.now()
            )
        return Response(LeadActivitySerializer(activity).data, status=status.HTTP_201_CREATED)


class CommunicationViewSet(viewsets.ModelViewSet):
    """
    /api/communications/?lead_id=
    """
    serializer_class = CommunicationSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        ctx = RequestContext.from_request(self.request)
        visible = leads_for_context(ctx).values("id")
        qs = Communication.objects.select_related("lead", "created_by").filter(lead_id__in=visible)

        if lead_id := self.request.query_params.get("lead_id"):
            qs = qs.filter(lead_id=lead_id)
        return qs

    def perform_create(self, serializer):
        ctx = RequestContext.from_request(self.request)
        lead = serializer.validated_data["lead"]
        if not leads_for_context(ctx).filter(pk=lead.pk).exists():
            raise NotFoundError(f"Lead {lead.pk} not found.")

        comm = serializer.save(created_by_id=ctx.user_id)
        Lead.objects.filter(pk=lead.pk).update(
            last_contacted_at=comm.completed_at or comm.created_at, updated_at=timezone.now()
        )
