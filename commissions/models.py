from django.conf import settings
from django.db import models

from accounts.models import User


def default_max_revisions():
    return settings.COMMISSION_MAX_REVISIONS


class CommissionRequest(models.Model):
    class Status(models.TextChoices):
        PENDING_ARTIST     = "pending_artist", "Pending Artist"
        REJECTED_BY_ARTIST = "rejected_by_artist", "Rejected By Artist"
        REQUESTED          = "requested", "Requested"
        IN_PROGRESS        = "in_progress", "In Progress"
        DELIVERED          = "delivered", "Delivered"
        APPROVED           = "approved", "Approved"
        CRON_PENDING       = "cron_pending", "Payout Queued"
        COMPLETED          = "completed", "Completed"
        CANCELLED          = "cancelled", "Cancelled"

    IMMUTABLE_FIELDS = ("customer_id", "artist_id", "artist_price", "customer_price")

    customer = models.ForeignKey(User, on_delete=models.PROTECT, related_name="commissions_requested")
    artist = models.ForeignKey(User, on_delete=models.PROTECT, related_name="commissions_received")
    requirements = models.TextField()

    artist_price = models.DecimalField(max_digits=10, decimal_places=2)
    customer_price = models.DecimalField(max_digits=10, decimal_places=2)

    status = models.CharField(max_length=30, choices=Status.choices, default=Status.PENDING_ARTIST)
    revision_count = models.PositiveIntegerField(default=0)
    max_revisions = models.PositiveIntegerField(default=default_max_revisions)
    cancellation_reason = models.TextField(blank=True, default="")

    stripe_session_id = models.CharField(max_length=255, null=True, blank=True)
    stripe_payment_intent_id = models.CharField(max_length=255, null=True, blank=True)
    stripe_transfer_id = models.CharField(max_length=255, null=True, blank=True)
    stripe_refund_id = models.CharField(max_length=255, null=True, blank=True)

    finished_asset_url = models.URLField(max_length=500, blank=True, default="")
    preview_asset_url = models.URLField(max_length=500, blank=True, default="")
    guide_asset_url = models.URLField(max_length=500, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["customer", "created_at"], name="commissions_custome_4b1f0e_idx"),
            models.Index(fields=["artist", "created_at"], name="commissions_artist__9c3a2d_idx"),
            models.Index(fields=["status"], name="commissions_status_5e7d1a_idx"),
            models.Index(fields=["stripe_session_id"], name="commissions_stripe__1a8c4f_idx"),
            models.Index(fields=["stripe_payment_intent_id"], name="commissions_stripe__7d2e9b_idx"),
        ]

    def __str__(self):
        return f"Commission {self.pk} ({self.status}) {self.customer_id} -> {self.artist_id}"

    @property
    def expiry_date(self):
        """Delivery deadline, derived from the artist's current SLA."""
        from payments.sweeper import parse_delivery_time

        if not self.created_at:
            return None
        return self.created_at + parse_delivery_time(self.artist.commission_delivery_time)

    @property
    def has_payment(self):
        return bool(self.stripe_payment_intent_id)

    def is_party(self, user):
        return user.id in (self.customer_id, self.artist_id)

    def save(self, *args, **kwargs):
        if self.pk is not None:
            original = (
                CommissionRequest.objects.filter(pk=self.pk)
                .values("customer_id", "artist_id", "artist_price", "customer_price",
                        "stripe_payment_intent_id", "stripe_transfer_id")
                .first()
            )
            if original:
                for field in self.IMMUTABLE_FIELDS:
                    if original[field] != getattr(self, field):
                        raise ValueError(f"{field} can't change after a commission is created")
                if original["stripe_payment_intent_id"] and (
                    self.stripe_payment_intent_id != original["stripe_payment_intent_id"]
                ):
                    raise ValueError("stripe_payment_intent_id is set once and never cleared")
                if original["stripe_transfer_id"] and (
                    self.stripe_transfer_id != original["stripe_transfer_id"]
                ):
                    raise ValueError("stripe_transfer_id is set at most once")
        super().save(*args, **kwargs)
