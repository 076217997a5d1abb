import io
import logging

import pandas as pd
from django.db import transaction
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from openpyxl import Workbook
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import ModelViewSet

from accounts.context import RequestContext
from accounts.permissions import IsManagerRole
from common.exceptions import ConflictError

from . import lifecycle
from .models import Project, Tower, Unit, UnitStatus
from .serializers import (
    ProjectSerializer,
    TowerSerializer,
    UnitBlockSerializer,
    UnitImportSerializer,
    UnitSerializer,
    UnitStatusHistorySerializer,
    UnitTransitionSerializer,
)

logger = logging.getLogger(__name__)


UNIT_EXPORT_HEADERS = [
    "id", "project", "tower", "unit_number", "floor", "property_type", "size",
    "base_rate", "plc", "gst", "stamp_duty", "total_price",
    "status", "view", "facing", "block_expiry_at",
]

UNIT_IMPORT_RENAME = {
    "tower_id": "tower",
    "unit_no": "unit_number",
    "type": "property_type",
    "rate": "base_rate",
    "stampduty": "stamp_duty",
    "stamp duty": "stamp_duty",
}


def _clean_cell(value):
    # pandas hands back floats for numeric cells ("101" -> 101.0)
    if value is None:
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return int(value)
    return value


class ProjectViewSet(ModelViewSet):
    """
    /api/projects/
    /api/projects/<id>/
    /api/projects/<id>/towers/             [GET, POST]
    /api/projects/<id>/available-units/    [GET]
    """
    queryset = Project.objects.select_related("developer").all()
    serializer_class = ProjectSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        q = self.request.query_params

        status_val = q.get("status")
        if status_val:
            qs = qs.filter(status=status_val)

        search = q.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(location__icontains=search))

        return qs.order_by("name")

    def get_permissions(self):
        if self.action == "destroy":
            return [IsAuthenticated(), IsManagerRole()]
        return super().get_permissions()

    def perform_create(self, serializer):
        ctx = RequestContext.from_request(self.request)
        project = serializer.save(developer_id=ctx.user_id)
        logger.info("Project %s created by user %s", project.pk, ctx.user_id)

    @action(detail=True, methods=["get", "post"], url_path="towers")
    def towers(self, request, pk=None):
        project = self.get_object()

        if request.method == "GET":
            qs = project.towers.all().order_by("name")
            return Response(TowerSerializer(qs, many=True).data)

        data = request.data.copy()
        data["project"] = project.pk
        ser = TowerSerializer(data=data, context={"request": request})
        ser.is_valid(raise_exception=True)
        tower = ser.save()
        return Response(TowerSerializer(tower).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"], url_path="available-units")
    def available_units(self, request, pk=None):
        project = self.get_object()
        qs = (
            Unit.objects
            .select_related("project", "tower")
            .filter(project=project, status=UnitStatus.AVAILABLE)
        )
        return Response(UnitSerializer(qs, many=True).data)


class TowerViewSet(ModelViewSet):
    queryset = Tower.objects.select_related("project").all()
    serializer_class = TowerSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = super().get_queryset()
        project_id = self.request.query_params.get("project_id")
        if project_id:
            qs = qs.filter(project_id=project_id)
        return qs

    @action(detail=True, methods=["get"], url_path="floors")
    def floors(self, request, pk=None):
        """
        Distinct floor numbers that actually hold units in this tower.
        """
        tower = self.get_object()
        floors = (
            Unit.objects
            .filter(tower=tower)
            .order_by("floor")
            .values_list("floor", flat=True)
            .distinct()
        )
        return Response({"tower_id": tower.pk, "floors": list(floors)})


class UnitViewSet(ModelViewSet):
    """
    Endpoints:
      - GET    /api/units/?project_id=&tower_id=&status=&property_type=
      - POST   /api/units/
      - GET    /api/units/{id}/
      - PUT    /api/units/{id}/
      - PATCH  /api/units/{id}/
      - DELETE /api/units/{id}/             (available units, manager roles)
      - POST   /api/units/{id}/block/       body: {hours?, reason?}
      - POST   /api/units/{id}/unblock/
      - POST   /api/units/{id}/sell/        (manager roles)
      - GET    /api/units/{id}/history/
      - GET    /api/units/export/?project_id=
      - POST   /api/units/import/           multipart "file"
    """
    queryset = Unit.objects.select_related("project", "tower", "blocked_by")
    serializer_class = UnitSerializer
    permission_classes = [IsAuthenticated]
    parser_classes = (JSONParser, MultiPartParser, FormParser)
    lookup_value_regex = r"\d+"

    def get_permissions(self):
        if self.action in ("destroy", "sell"):
            return [IsAuthenticated(), IsManagerRole()]
        return super().get_permissions()

    def get_queryset(self):
        qs = super().get_queryset()
        q = self.request.query_params

        project_id = q.get("project_id")
        if project_id:
            qs = qs.filter(project_id=project_id)

        tower_id = q.get("tower_id")
        if tower_id:
            qs = qs.filter(tower_id=tower_id)

        status_val = q.get("status")
        if status_val:
            qs = qs.filter(status=status_val)

        property_type = q.get("property_type")
        if property_type:
            qs = qs.filter(property_type=property_type)

        return qs.order_by("tower_id", "floor", "unit_number")

    def perform_destroy(self, instance):
        if instance.status != UnitStatus.AVAILABLE:
            raise ConflictError(attempted="delete unit", current_status=instance.status)
        project_id = instance.project_id
        with transaction.atomic():
            # only delete if nobody blocked/booked it since we read it
            deleted, _ = Unit.objects.filter(pk=instance.pk, status=UnitStatus.AVAILABLE).delete()
            if not deleted:
                current = Unit.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
                raise ConflictError(attempted="delete unit", current_status=current)
            Project.refresh_unit_counts(project_id)
        logger.info("Unit %s deleted", instance.pk)

    # --- lifecycle actions ---

    @action(detail=True, methods=["post"], url_path="block")
    def block(self, request, pk=None):
        ser = UnitBlockSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        unit = lifecycle.block_unit(
            int(pk),
            RequestContext.from_request(request),
            hours=ser.validated_data.get("hours"),
            reason=ser.validated_data.get("reason", ""),
        )
        return Response(UnitSerializer(unit).data)

    @action(detail=True, methods=["post"], url_path="unblock")
    def unblock(self, request, pk=None):
        ser = UnitTransitionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        unit = lifecycle.unblock_unit(
            int(pk),
            RequestContext.from_request(request),
            reason=ser.validated_data.get("reason", ""),
        )
        return Response(UnitSerializer(unit).data)

    @action(detail=True, methods=["post"], url_path="sell")
    def sell(self, request, pk=None):
        ser = UnitTransitionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        unit = lifecycle.sell_unit(
            int(pk),
            RequestContext.from_request(request),
            reason=ser.validated_data.get("reason", ""),
        )
        return Response(UnitSerializer(unit).data)

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request, pk=None):
        unit = get_object_or_404(Unit, pk=pk)
        qs = unit.status_history.select_related("changed_by")
        return Response(UnitStatusHistorySerializer(qs, many=True).data)

    # --- excel ---

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        qs = self.get_queryset()

        wb = Workbook()
        ws = wb.active
        ws.title = "Units"
        ws.append(UNIT_EXPORT_HEADERS)

        for u in qs:
            ws.append([
                u.pk,
                u.project.name,
                u.tower.name,
                u.unit_number,
                u.floor,
                u.property_type,
                float(u.size) if u.size is not None else None,
                float(u.base_rate),
                float(u.plc),
                float(u.gst),
                float(u.stamp_duty),
                float(u.total_price),
                u.status,
                u.view,
                u.facing,
                u.block_expiry_at.replace(tzinfo=None) if u.block_expiry_at else None,
            ])

        buf = io.BytesIO()
        wb.save(buf)
        buf.seek(0)
        resp = HttpResponse(
            buf.read(),
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        resp["Content-Disposition"] = 'attachment; filename="units.xlsx"'
        return resp

    @action(detail=False, methods=["post"], url_path="import")
    def import_units(self, request):
        """
        One row per unit. Columns: tower, unit_number, floor, property_type, size,
        base_rate, plc, gst, stamp_duty, view, facing.
        Valid rows are created; invalid rows come back in "errors" with their row number.
        """
        upload = UnitImportSerializer(data=request.data)
        upload.is_valid(raise_exception=True)

        try:
            df = pd.read_excel(upload.validated_data["file"])
        except Exception as e:
            return Response(
                {"kind": "validation", "detail": f"Failed to read Excel: {e}"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        df.columns = [str(c).strip().lower() for c in df.columns]
        df.rename(columns=UNIT_IMPORT_RENAME, inplace=True)
        rows = df.to_dict(orient="records")

        created = []
        errors = []

        for idx, raw in enumerate(rows, start=2):  # row 1 is the header
            payload = {k: _clean_cell(v) for k, v in raw.items()}
            payload = {k: v for k, v in payload.items() if v is not None}
            if "unit_number" in payload:
                payload["unit_number"] = str(payload["unit_number"])

            ser = UnitSerializer(data=payload, context={"request": request})
            if not ser.is_valid():
                errors.append({"row": idx, "errors": ser.errors})
                continue
            with transaction.atomic():
                unit = ser.save()
            created.append(unit.pk)

        logger.info("Unit import: %s created, %s rejected", len(created), len(errors))
        code = (
            status.HTTP_201_CREATED
            if created and not errors
            else status.HTTP_207_MULTI_STATUS
        )
        return Response({"created_ids": created, "errors": errors}, status=code)
