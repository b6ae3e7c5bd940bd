# accounts/serializers.py
from rest_framework import serializers
from .models import User


class PartySerializer(serializers.ModelSerializer):
    """Public view of a commission party; settlement details stay private."""

    class Meta:
        model = User
        fields = ["id", "email", "full_name", "role"]
        read_only_fields = fields

