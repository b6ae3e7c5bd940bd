from django.conf import settings
from django.db import models
from django.utils import timezone


class MoneyOwed(models.Model):
	"""A queued, not yet transferred amount owed to a payee."""

	class Source(models.TextChoices):
		CHECKOUT_PURCHASE = 'checkout_purchase', 'Checkout Purchase'
		COMMISSION = 'commission', 'Commission Payout'
		MANUAL = 'manual', 'Manual Adjustment'

	payee = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='money_owed')
	amount = models.DecimalField(max_digits=10, decimal_places=2)
	source = models.CharField(max_length=30, choices=Source.choices)
	reference = models.CharField(max_length=255, blank=True, default='')
	commission = models.ForeignKey(
		'commissions.CommissionRequest', on_delete=models.SET_NULL,
		null=True, blank=True, related_name='money_owed',
	)
	payment_intent_id = models.CharField(max_length=255, null=True, blank=True)
	metadata = models.JSONField(default=dict, blank=True)
	created_at = models.DateTimeField(default=timezone.now)

	class Meta:
		ordering = ['created_at', 'id']
		indexes = [
			models.Index(fields=['payee', 'created_at'], name='payments_mo_payee_i_5b8d2f_idx'),
			models.Index(fields=['payment_intent_id'], name='payments_mo_payment_3c6a9e_idx'),
		]

	def __str__(self):
		return f"{self.payee_id} owed {self.amount} ({self.source}) {self.reference}"

	@property
	def dedup_key(self):
		return (self.payment_intent_id, self.amount, self.source)


class EventAudit(models.Model):
	event_id = models.CharField(max_length=200, unique=True)
	event_type = models.CharField(max_length=100)
	payload = models.JSONField()
	processed_at = models.DateTimeField(auto_now_add=True)
	is_duplicate = models.BooleanField(default=False)
	outcome = models.CharField(max_length=30, blank=True, default='')


class ManualReviewItem(models.Model):
	KIND_CHOICES = [
		('unresolvable_event', 'Unresolvable payment event'),
		('payment_mismatch', 'Payment intent mismatch'),
		('stale_money_owed', 'Stale money owed entry'),
		('refund_failed', 'Refund failed'),
		('payout_blocked', 'Payout blocked'),
	]
	kind = models.CharField(max_length=30, choices=KIND_CHOICES)
	reference = models.CharField(max_length=255)
	detail = models.TextField(blank=True, default='')
	payload = models.JSONField(default=dict, blank=True)
	resolved = models.BooleanField(default=False)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		ordering = ['-created_at']
		indexes = [
			models.Index(fields=['kind', 'resolved'], name='payments_ma_kind_2a7f3b_idx'),
			models.Index(fields=['reference'], name='payments_ma_referen_9e4c1d_idx'),
		]

	def __str__(self):
		return f"{self.kind}: {self.reference}"


class CronWatermark(models.Model):
	"""Last successful start of a scheduled job, shared by every scheduler process."""

	name = models.CharField(max_length=100, unique=True)
	last_run_at = models.DateTimeField(null=True, blank=True)

	def __str__(self):
		return f"{self.name} @ {self.last_run_at}"
