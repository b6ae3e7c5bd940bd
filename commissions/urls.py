# commissions/urls.py
from django.urls import path

from .views import (
    AdminQueuePayoutView,
    ArtistRespondView,
    CancelCommissionView,
    CommissionDetailView,
    ConfirmCommissionView,
    CreateCommissionView,
    DeleteCommissionView,
    DeliverCommissionView,
    ListArtistCommissionsView,
    ListCustomerCommissionsView,
    PayCommissionView,
    RequestRevisionView,
)

urlpatterns = [
    path("request/", CreateCommissionView.as_view(), name="commission_request"),
    path("customer/commissions/", ListCustomerCommissionsView.as_view(), name="customer_commissions"),
    path("artist/commissions/", ListArtistCommissionsView.as_view(), name="artist_commissions"),
    path("artist/respond/", ArtistRespondView.as_view(), name="artist_respond"),
    path("pay/", PayCommissionView.as_view(), name="commission_pay"),
    path("deliver/", DeliverCommissionView.as_view(), name="commission_deliver"),
    path("confirm/", ConfirmCommissionView.as_view(), name="commission_confirm"),
    path("revision/", RequestRevisionView.as_view(), name="commission_revision"),
    path("cancel/", CancelCommissionView.as_view(), name="commission_cancel"),
    path("admin/queue-payout/", AdminQueuePayoutView.as_view(), name="commission_queue_payout"),
    path("<int:commission_id>/", CommissionDetailView.as_view(), name="commission_detail"),
    path("<int:commission_id>/delete/", DeleteCommissionView.as_view(), name="commission_delete"),
]
