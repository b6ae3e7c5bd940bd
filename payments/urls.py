from django.urls import path
from . import views

urlpatterns = [
	path('webhooks/stripe/', views.stripe_webhook, name='stripe_webhook'),
	path('admin/run-payouts/', views.RunPayoutsView.as_view(), name='run_payouts'),
	path('admin/run-expiry-sweep/', views.RunExpirySweepView.as_view(), name='run_expiry_sweep'),
	path('admin/run-reconcile/', views.RunReconcileView.as_view(), name='run_reconcile'),
	path('admin/run-cleanup/', views.RunCleanupView.as_view(), name='run_cleanup'),
]
