# booking/views.py
from django.db.models import Q
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.context import RequestContext
from accounts.permissions import IsManagerRole
from common.exceptions import ConflictError, NotFoundError

from . import services
from .models import Booking, Negotiation, NegotiationStatus, Payment, PaymentStatus
from .serializers import (
    BookingCreateSerializer,
    BookingScheduleSerializer,
    BookingSerializer,
    BookingStatusHistorySerializer,
    BookingUpdateSerializer,
    NegotiationSerializer,
    PaymentRecordSerializer,
    PaymentSerializer,
)


def visible_bookings(ctx):
    qs = Booking.objects.all()
    if not ctx.is_manager:
        qs = qs.filter(Q(sales_person_id=ctx.user_id) | Q(lead__assigned_to_id=ctx.user_id))
    return qs


class NegotiationViewSet(viewsets.ModelViewSet):
    """
    /api/negotiations/?lead_id=&status=
      GET    -> list
      POST   -> create (always starts pending)
    /api/negotiations/{id}/
      GET    -> detail
      PUT    -> update fields and/or status; status=approved books the unit
      DELETE -> manager roles, not once approved
    """
    queryset = Negotiation.objects.select_related("lead", "unit", "project", "booking")
    serializer_class = NegotiationSerializer
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = r"\d+"

    def get_permissions(self):
        if self.action == "destroy":
            return [permissions.IsAuthenticated(), IsManagerRole()]
        return super().get_permissions()

    def get_queryset(self):
        qs = super().get_queryset()
        ctx = RequestContext.from_request(self.request)

        if not ctx.is_manager:
            qs = qs.filter(Q(lead__assigned_to_id=ctx.user_id) | Q(created_by_id=ctx.user_id))

        p = self.request.query_params
        if lead_id := p.get("lead_id"):
            qs = qs.filter(lead_id=lead_id)
        if status_val := p.get("status"):
            qs = qs.filter(status=status_val)
        return qs

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        lead = data.pop("lead")

        neg = services.create_negotiation(RequestContext.from_request(request), lead=lead, **data)
        return Response(self.get_serializer(neg).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        instance = self.get_object()
        ser = self.get_serializer(instance, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)

        neg = services.update_negotiation(
            RequestContext.from_request(request), instance.pk, ser.validated_data
        )
        neg = self.get_queryset().get(pk=neg.pk)
        return Response(self.get_serializer(neg).data)

    def perform_destroy(self, instance):
        if instance.status == NegotiationStatus.APPROVED:
            raise ConflictError(attempted="delete negotiation", current_status=instance.status)
        instance.delete()


class BookingViewSet(viewsets.ModelViewSet):
    """
    /api/bookings/?project_id=&unit_id=&lead_id=
      GET    -> list
      POST   -> create; books the unit atomically, optional "schedule" list
    /api/bookings/{id}/
      GET    -> detail (with payments)
      PUT    -> dates / notes
    /api/bookings/{id}/schedule/   POST  -> save generated or supplied schedule
    /api/bookings/{id}/payments/   GET
    /api/bookings/{id}/history/    GET
    """
    queryset = Booking.objects.select_related("lead", "unit", "project", "sales_person").prefetch_related("payments")
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        qs = super().get_queryset()
        ctx = RequestContext.from_request(self.request)

        if not ctx.is_manager:
            qs = qs.filter(Q(sales_person_id=ctx.user_id) | Q(lead__assigned_to_id=ctx.user_id))

        p = self.request.query_params
        if project_id := p.get("project_id"):
            qs = qs.filter(project_id=project_id)
        if unit_id := p.get("unit_id"):
            qs = qs.filter(unit_id=unit_id)
        if lead_id := p.get("lead_id"):
            qs = qs.filter(lead_id=lead_id)
        return qs

    def create(self, request, *args, **kwargs):
        ser = BookingCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)

        booking = services.create_booking(
            RequestContext.from_request(request),
            lead_id=data.pop("lead"),
            unit_id=data.pop("unit"),
            **data,
        )
        booking = Booking.objects.prefetch_related("payments").get(pk=booking.pk)
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        instance = self.get_object()
        ser = BookingUpdateSerializer(instance, data=request.data, partial=True)
        ser.is_valid(raise_exception=True)
        ser.save()
        return Response(BookingSerializer(instance).data)

    @action(detail=True, methods=["post"], url_path="schedule")
    def schedule(self, request, pk=None):
        booking = self.get_object()
        ser = BookingScheduleSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        payments = services.save_schedule(
            RequestContext.from_request(request),
            booking.pk,
            items=data.get("items"),
            plan_type=data.get("plan_type"),
            down_payment_percent=data["down_payment_percent"],
            installment_count=data["installment_count"],
            start_date=data.get("start_date"),
        )
        return Response(PaymentSerializer(payments, many=True).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"], url_path="payments")
    def payments(self, request, pk=None):
        booking = self.get_object()
        return Response(PaymentSerializer(booking.payments.all(), many=True).data)

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        booking = self.get_object()
        return Response(BookingStatusHistorySerializer(booking.status_history.all(), many=True).data)


class PaymentViewSet(viewsets.ModelViewSet):
    """
    /api/payments/?booking_id=&status=
      POST   -> add a row; the booking's schedule must still add up to final_amount
    /api/payments/{id}/
      PUT    -> edit a row, same rule; paid and locked rows are refused
    /api/payments/pending/              unsettled (pending / partial / overdue)
    /api/payments/{id}/record/  POST    record a receipt
    """
    queryset = Payment.objects.select_related("booking", "booking__lead")
    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        qs = super().get_queryset()
        ctx = RequestContext.from_request(self.request)

        if not ctx.is_manager:
            qs = qs.filter(
                Q(booking__sales_person_id=ctx.user_id) | Q(booking__lead__assigned_to_id=ctx.user_id)
            )

        p = self.request.query_params
        if booking_id := p.get("booking_id"):
            qs = qs.filter(booking_id=booking_id)
        if status_val := p.get("status"):
            qs = qs.filter(status=status_val)
        return qs.order_by("due_date", "booking_id", "sequence")

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        booking = data.pop("booking")
        ctx = RequestContext.from_request(request)

        if not visible_bookings(ctx).filter(pk=booking.pk).exists():
            raise NotFoundError(f"Booking {booking.pk} not found.")

        payment = services.add_payment(ctx, booking.pk, **data)
        return Response(self.get_serializer(payment).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        instance = self.get_object()
        ser = self.get_serializer(instance, data=request.data, partial=partial)
        ser.is_valid(raise_exception=True)

        payment = services.update_payment(
            RequestContext.from_request(request), instance.pk, ser.validated_data
        )
        return Response(self.get_serializer(payment).data)

    @action(detail=False, methods=["get"], url_path="pending")
    def pending(self, request):
        qs = self.get_queryset().filter(
            status__in=[PaymentStatus.PENDING, PaymentStatus.PARTIAL, PaymentStatus.OVERDUE]
        )
        return Response(self.get_serializer(qs, many=True).data)

    @action(detail=True, methods=["post"], url_path="record")
    def record(self, request, pk=None):
        payment = self.get_object()
        ser = PaymentRecordSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        payment = services.record_payment(
            RequestContext.from_request(request),
            payment.pk,
            **ser.validated_data,
        )
        return Response(self.get_serializer(payment).data)
