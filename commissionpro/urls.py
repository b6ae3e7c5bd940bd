"""
URL configuration for commissionpro project.
"""
from django.urls import path, include
from activity.views import CommissionActivityListView, MarkNotificationReadView, NotificationListView


urlpatterns = [
    path('commission/', include('commissions.urls')),
    path('payments/', include('payments.urls')),
    path("activity/", CommissionActivityListView.as_view(), name="commission_activity_list"),

    path('notifications/', NotificationListView.as_view(), name='notification_list'),
    path('notifications/mark-read/', MarkNotificationReadView.as_view(), name='mark_notification_read'),
]
