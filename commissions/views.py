# rest framework
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework import status

import logging

# models
from .models import CommissionRequest
from .serializers import (
    CommissionActionSerializer,
    CommissionRequestSerializer,
    CreateCommissionSerializer,
    DeliverySerializer,
)
from .exceptions import CommissionError
from . import services

logger = logging.getLogger(__name__)


def error_response(exc):
    return Response(exc.as_response_data(), status=exc.status_code)


def _load_commission(request, serializer_class=CommissionActionSerializer):
    """Validate the body and fetch the commission it names. Returns (data, commission, error_response)."""
    serializer = serializer_class(data=request.data)
    if not serializer.is_valid():
        return None, None, Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data
    commission = services.get_commission(data["commission_id"], request.user)
    if commission is None:
        return data, None, Response({"error": "Commission not found"}, status=status.HTTP_404_NOT_FOUND)
    return data, commission, None


class CreateCommissionView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CreateCommissionSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data
        try:
            commission = services.create_commission(
                customer=request.user,
                artist=data["artist"],
                requirements=data["requirements"],
                price=data.get("price"),
                guide_asset_url=data.get("guide_asset_url", ""),
            )
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_201_CREATED)


class CommissionDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, commission_id):
        try:
            commission = services.get_commission(commission_id, request.user)
        except CommissionError as e:
            return error_response(e)
        if commission is None:
            return Response({"error": "Commission not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)


class ListCustomerCommissionsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        commissions = services.list_for_customer(request.user).select_related("customer")
        status_filter = request.query_params.get("status")
        if status_filter:
            commissions = commissions.filter(status=status_filter)
        return Response(
            {"commissions": CommissionRequestSerializer(commissions, many=True).data},
            status=status.HTTP_200_OK,
        )


class ListArtistCommissionsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        if request.user.role not in ("artist", "admin"):
            return Response({"error": "Only artists have incoming commissions"}, status=status.HTTP_403_FORBIDDEN)
        commissions = services.list_for_artist(request.user).select_related("artist")
        status_filter = request.query_params.get("status")
        if status_filter:
            commissions = commissions.filter(status=status_filter)
        return Response(
            {"commissions": CommissionRequestSerializer(commissions, many=True).data},
            status=status.HTTP_200_OK,
        )


class ArtistRespondView(APIView):
    """Artist accepts or rejects a pending request. Body: commission_id, action=accept|reject."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            services.respond_to_request(commission, request.user, data.get("action"))
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)


class PayCommissionView(APIView):
    """Customer pays for an accepted commission; returns the Stripe Checkout session."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            session = services.create_checkout(commission, request.user)
        except CommissionError as e:
            return error_response(e)
        return Response(
            {"session_id": session["id"], "session_url": session.get("url")},
            status=status.HTTP_200_OK,
        )


class DeliverCommissionView(APIView):
    """Artist hands over the finished asset. Uploading happens elsewhere; only URLs arrive here."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request, DeliverySerializer)
            if error:
                return error
            services.deliver(
                commission, request.user,
                finished_asset_url=data["finished_asset_url"],
                preview_asset_url=data.get("preview_asset_url", ""),
            )
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)


class ConfirmCommissionView(APIView):
    """Customer approves the delivery or asks for a revision. Body: commission_id, action=approve|deny."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            services.respond_to_delivery(commission, request.user, data.get("action"))
        except CommissionError as e:
            return error_response(e)

        if commission.status == CommissionRequest.Status.CRON_PENDING:
            message = "Commission approved. Artist will be paid out."
        else:
            message = "Revision requested. Artist may re-upload."
        return Response(
            {"success": True, "message": message, "commission": CommissionRequestSerializer(commission).data},
            status=status.HTTP_200_OK,
        )


class RequestRevisionView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            services.request_revision(commission, request.user)
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)


class CancelCommissionView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            services.cancel(commission, request.user, data.get("reason", ""))
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)


class DeleteCommissionView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request, commission_id):
        try:
            commission = services.get_commission(commission_id, request.user)
            if commission is None:
                return Response({"error": "Commission not found"}, status=status.HTTP_404_NOT_FOUND)
            services.delete_commission(commission, request.user)
        except CommissionError as e:
            return error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class AdminQueuePayoutView(APIView):
    """Admin pushes an approved/delivered commission into the payout queue."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        if not request.user.is_admin:
            return Response(
                {"error": "Access denied. Only admins can access this resource."},
                status=status.HTTP_403_FORBIDDEN,
            )
        try:
            data, commission, error = _load_commission(request)
            if error:
                return error
            services.queue_payout(commission, request.user)
        except CommissionError as e:
            return error_response(e)
        return Response(CommissionRequestSerializer(commission).data, status=status.HTTP_200_OK)
