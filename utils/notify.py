# utils/notify.py
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import connection, transaction
from django.utils import timezone

logger = logging.getLogger(__name__)

# ---------- internal helpers ----------

def _create_notifications_safely(model_cls, objs):
    """
    Create rows and guarantee .id is populated on returned objects.
    Uses bulk_create only if the backend can return rows from bulk insert.
    """
    if not objs:
        return []

    can_return_ids = getattr(connection.features, "can_return_rows_from_bulk_insert", False)

    if can_return_ids:
        created = model_cls.objects.bulk_create(objs)
    else:
        # Fallback: save individually so .id is set.
        created = []
        with transaction.atomic():
            for o in objs:
                o.save()
                created.append(o)

    if any(getattr(o, "id", None) is None for o in created):
        raise RuntimeError(
            f"{model_cls.__name__}: bulk insert returned objects without IDs. "
            "Either your DB doesn't support returning IDs for bulk inserts or the model is misconfigured."
        )

    return created


def _serialize_notification(n):
    actor_user = None
    if n.actor_user_id and getattr(n, "actor_user", None):
        actor_user = {
            "id": n.actor_user.id,
            "full_name": getattr(n.actor_user, "full_name", None),
        }

    commission = None
    if n.commission_id and getattr(n, "commission", None):
        commission = {
            "id": n.commission.id,
            "status": n.commission.status,
        }

    return {
        "id": n.id,
        "event_type": n.event_type,
        "title": n.title,
        "message": n.message,
        "is_read": n.is_read,
        "created_at": n.created_at.isoformat() if n.created_at else timezone.now().isoformat(),
        "meta_data": n.meta_data,
        "actor_user": actor_user,
        "commission": commission,
    }


def _store_commission_notifications_in_db(user_ids, payload):
    from accounts.models import User
    from activity.models import Notification

    recipients = list(User.objects.filter(id__in=[u for u in user_ids if u]))
    if not recipients:
        return []

    objs = [
        Notification(
            user=r,
            actor_user_id=payload.get("actor_id"),
            commission_id=payload.get("commission_id"),
            event_type=payload.get("event", "notification"),
            title=payload.get("title", "Notification"),
            message=payload.get("message", ""),
            meta_data=payload.get("meta") or {},
        )
        for r in recipients
    ]
    return _create_notifications_safely(Notification, objs)

# ---------- public dispatchers ----------

def notify_users(user_ids, payload, event_type="commission_notification"):
    """
    Store and push a notification. Fire-and-forget: a failure here is
    logged and never propagates into the lifecycle transition that sent it.
    """
    try:
        created_notifications = _store_commission_notifications_in_db(user_ids, payload)
    except Exception as e:
        logger.error(f"Failed to store notification {payload.get('event')}: {e}")
        return []

    channel_layer = get_channel_layer()
    if channel_layer is None:
        return created_notifications

    for n in created_notifications:
        try:
            async_to_sync(channel_layer.group_send)(
                f"notifications_{n.user_id}",
                {"type": event_type, **_serialize_notification(n)},
            )
        except Exception as e:
            logger.error(f"Failed to push notification {n.id} to user {n.user_id}: {e}")

    return created_notifications
