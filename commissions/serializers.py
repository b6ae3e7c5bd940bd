# commissions/serializers.py
from rest_framework import serializers

from accounts.models import User
from accounts.serializers import PartySerializer
from .models import CommissionRequest


class CommissionRequestSerializer(serializers.ModelSerializer):
    customer = PartySerializer(read_only=True)
    artist = PartySerializer(read_only=True)
    expiry_date = serializers.SerializerMethodField()
    revisions_remaining = serializers.SerializerMethodField()

    class Meta:
        model = CommissionRequest
        fields = [
            "id", "customer", "artist", "requirements",
            "artist_price", "customer_price",
            "status", "revision_count", "max_revisions", "revisions_remaining",
            "cancellation_reason",
            "stripe_session_id", "stripe_payment_intent_id", "stripe_transfer_id",
            "finished_asset_url", "preview_asset_url", "guide_asset_url",
            "created_at", "updated_at", "completed_at", "expiry_date",
        ]
        read_only_fields = fields

    def get_expiry_date(self, obj):
        expiry = obj.expiry_date
        return expiry.isoformat() if expiry else None

    def get_revisions_remaining(self, obj):
        return max(obj.max_revisions - obj.revision_count, 0)


class CreateCommissionSerializer(serializers.Serializer):
    artist_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(role__in=["artist", "admin"]), source="artist"
    )
    requirements = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    guide_asset_url = serializers.URLField(required=False, allow_blank=True)


class CommissionActionSerializer(serializers.Serializer):
    commission_id = serializers.IntegerField()
    action = serializers.CharField(required=False, allow_blank=True)
    reason = serializers.CharField(required=False, allow_blank=True)


class DeliverySerializer(serializers.Serializer):
    commission_id = serializers.IntegerField()
    finished_asset_url = serializers.URLField()
    preview_asset_url = serializers.URLField(required=False, allow_blank=True)
