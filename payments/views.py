import json
import logging

import stripe
from django.conf import settings
from django.db import transaction
from django.http import HttpResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import processor
from .dispatcher import dispatch_payouts
from .ledger import cleanup_money_owed
from .models import EventAudit
from .reconciler import apply_checkout_completed, reconcile_recent_sessions
from .sweeper import sweep_expired_commissions

logger = logging.getLogger(__name__)

CHECKOUT_EVENTS = ('checkout.session.completed', 'checkout.session.async_payment_succeeded')


@csrf_exempt
def stripe_webhook(request):
	"""Verify a Stripe event and hand completed checkouts to the reconciler."""
	if request.method != 'POST':
		return HttpResponseBadRequest('POST only')
	payload = request.body
	sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')
	if not settings.STRIPE_WEBHOOK_SECRET:
		return HttpResponseBadRequest('Missing STRIPE_WEBHOOK_SECRET')
	try:
		processor.construct_webhook_event(payload, sig_header)
	except (ValueError, stripe.SignatureVerificationError) as e:
		logger.warning(f"Rejected Stripe webhook: {e}")
		return HttpResponse(status=400)

	# Signature checked; work from the plain JSON body
	event = json.loads(payload)

	# Audit row and processing commit together, so a failed attempt is retried by Stripe
	type_ = event['type']
	with transaction.atomic():
		audit, created = EventAudit.objects.get_or_create(
			event_id=event['id'],
			defaults={'event_type': type_, 'payload': event}
		)
		if not created:
			EventAudit.objects.filter(pk=audit.pk).update(is_duplicate=True)
			logger.info(f"Stripe event {event['id']} already processed")
			return HttpResponse(status=200)

		if type_ not in CHECKOUT_EVENTS:
			EventAudit.objects.filter(pk=audit.pk).update(outcome='ignored')
			return HttpResponse(status=200)

		session = event['data']['object']
		result = apply_checkout_completed(session, source='webhook')
		EventAudit.objects.filter(pk=audit.pk).update(outcome=result.outcome)
	logger.info(f"Stripe event {event['id']} ({type_}): {result.outcome} {result.detail}")

	# Handled events get 200 so Stripe stops retrying; unresolved ones are flagged for review
	return HttpResponse(status=200)


class AdminJobView(APIView):
	"""Force-run a settlement job outside its schedule. Admin only."""
	permission_classes = [IsAuthenticated]
	job_name = None

	def run_job(self):
		raise NotImplementedError

	def post(self, request):
		if not request.user.is_admin:
			return Response(
				{"error": "Access denied. Only admins can access this resource."},
				status=status.HTTP_403_FORBIDDEN,
			)
		logger.info(f"Admin {request.user.id} force-running {self.job_name}")
		report = self.run_job()
		return Response({"job": self.job_name, "report": report.as_dict()}, status=status.HTTP_200_OK)


class RunPayoutsView(AdminJobView):
	job_name = 'payouts'

	def run_job(self):
		return dispatch_payouts()


class RunExpirySweepView(AdminJobView):
	job_name = 'expiry_sweep'

	def run_job(self):
		return sweep_expired_commissions()


class RunReconcileView(AdminJobView):
	job_name = 'reconcile'

	def run_job(self):
		minutes = self.request.data.get('minutes')
		try:
			minutes = int(minutes) if minutes else None
		except (TypeError, ValueError):
			minutes = None
		return reconcile_recent_sessions(minutes)


class RunCleanupView(AdminJobView):
	job_name = 'money_owed_cleanup'

	def run_job(self):
		return cleanup_money_owed()
