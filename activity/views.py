# views.py

import logging

from django.utils.dateparse import parse_datetime
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework import status

from commissions.exceptions import CommissionError
from commissions.services import get_commission
from .models import ActivityLog, Notification
from .serializers import ActivityLogSerializer, NotificationSerializer

logger = logging.getLogger(__name__)


class CommissionActivityListView(APIView):
    """Timeline of a commission, oldest first. Parties and admins only."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        commission_id = request.query_params.get("commission_id")
        if not commission_id:
            return Response({"error": "commission_id is required"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            commission = get_commission(commission_id, request.user)
        except CommissionError as e:
            return Response(e.as_response_data(), status=e.status_code)
        if commission is None:
            return Response({"error": "Commission not found"}, status=status.HTTP_404_NOT_FOUND)

        qs = ActivityLog.objects.filter(commission=commission).select_related("actor", "subject_user")

        # Optional since filter (?since=2025-10-01T00:00:00Z)
        since = request.query_params.get("since")
        if since:
            dt = parse_datetime(since)
            if dt:
                qs = qs.filter(created_at__gte=dt)

        qs = qs.order_by("created_at", "id")
        return Response({"results": ActivityLogSerializer(qs, many=True).data}, status=status.HTTP_200_OK)


class NotificationListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        qs = Notification.objects.filter(user=request.user)
        if request.query_params.get("unread") in ("1", "true"):
            qs = qs.filter(is_read=False)
        return Response(
            {
                "results": NotificationSerializer(qs[:100], many=True).data,
                "unread_count": Notification.objects.filter(user=request.user, is_read=False).count(),
            },
            status=status.HTTP_200_OK,
        )


class MarkNotificationReadView(APIView):
    """POST {"ids": [...]} marks those read; an empty body marks everything read."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ids = request.data.get("ids") or []
        qs = Notification.objects.filter(user=request.user, is_read=False)
        if ids:
            qs = qs.filter(id__in=ids)
        updated = qs.update(is_read=True)
        return Response({"updated": updated}, status=status.HTTP_200_OK)
