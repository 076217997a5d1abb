import logging

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .schedule import generate_schedule
from .serializers import ScheduleItemSerializer, SchedulePreviewSerializer

logger = logging.getLogger(__name__)


class SchedulePreviewAPIView(APIView):
    """
    POST /api/costsheet/schedule/preview/
      body: { total_amount, plan_type, down_payment_percent?, installment_count?, start_date? }
    Returns the generated schedule. Nothing is saved.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = SchedulePreviewSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        items = generate_schedule(
            data["total_amount"],
            data["plan_type"],
            down_payment_percent=data["down_payment_percent"],
            installment_count=data["installment_count"],
            start_date=data.get("start_date"),
        )
        return Response({
            "total_amount": str(data["total_amount"]),
            "plan_type": data["plan_type"],
            "items": ScheduleItemSerializer(items, many=True).data,
        })
