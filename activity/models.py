# activity/models.py
from django.db import models
from django.utils import timezone
from accounts.models import User
from commissions.models import CommissionRequest


class ActivityLog(models.Model):
    class Event(models.TextChoices):
        COMMISSION_CREATED   = "commission_created", "Commission Created"
        ARTIST_ACCEPTED      = "artist_accepted", "Artist Accepted"
        ARTIST_REJECTED      = "artist_rejected", "Artist Rejected"
        CHECKOUT_CREATED     = "checkout_created", "Checkout Created"
        PAYMENT_CONFIRMED    = "payment_confirmed", "Payment Confirmed"
        DELIVERED            = "delivered", "Delivered"
        REVISION_REQUESTED   = "revision_requested", "Revision Requested"
        APPROVED             = "approved", "Approved"
        PAYOUT_QUEUED        = "payout_queued", "Payout Queued"
        PAYOUT_SENT          = "payout_sent", "Payout Sent"
        PAYOUT_FAILED        = "payout_failed", "Payout Failed"
        REFUNDED             = "refunded", "Refunded"
        CANCELLED            = "cancelled", "Cancelled"
        EXPIRED              = "expired", "Expired"
        DELETED              = "deleted", "Deleted"

    event = models.CharField(max_length=40, choices=Event.choices)
    actor = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name="activity_actor")
    commission = models.ForeignKey(CommissionRequest, null=True, blank=True, on_delete=models.SET_NULL, related_name="activities")

    # Optional second user, e.g. the payee of a transfer
    subject_user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name="activity_subject")

    # Freeform text + structured metadata
    title = models.CharField(max_length=200, blank=True)
    body = models.TextField(blank=True)
    meta = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=["commission", "created_at"], name="activity_ac_commiss_3f9a1c_idx"),
            models.Index(fields=["event", "created_at"], name="activity_ac_event_8b2d4e_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.event} | commission={self.commission_id} | at={self.created_at.isoformat()}"


class Notification(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notifications")
    actor_user = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    commission = models.ForeignKey(CommissionRequest, null=True, blank=True, on_delete=models.SET_NULL, related_name="notifications")
    event_type = models.CharField(max_length=60)
    title = models.CharField(max_length=200)
    message = models.TextField(blank=True)
    meta_data = models.JSONField(null=True, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="activity_no_user_id_6c1e2a_idx"),
        ]

    def __str__(self):
        return f"{self.user_id}: {self.event_type}"
