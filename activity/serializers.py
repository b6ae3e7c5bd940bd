# activity/serializers.py
from rest_framework import serializers
from .models import ActivityLog, Notification

class ActivityLogSerializer(serializers.ModelSerializer):
    actor_name = serializers.SerializerMethodField()
    subject_name = serializers.SerializerMethodField()

    class Meta:
        model = ActivityLog
        fields = [
            "id","event","title","body","meta","created_at",
            "actor","actor_name","subject_user","subject_name","commission",
        ]

    def get_actor_name(self, obj):
        return getattr(obj.actor, "full_name", None)

    def get_subject_name(self, obj):
        return getattr(obj.subject_user, "full_name", None)


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ["id","event_type","title","message","meta_data","is_read","commission","actor_user","created_at"]
