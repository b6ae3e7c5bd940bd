from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

	initial = True

	dependencies = [
		migrations.swappable_dependency(settings.AUTH_USER_MODEL),
		('commissions', '0001_initial'),
	]

	operations = [
		migrations.CreateModel(
			name='CronWatermark',
			fields=[
				('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
				('name', models.CharField(max_length=100, unique=True)),
				('last_run_at', models.DateTimeField(blank=True, null=True)),
			],
		),
		migrations.CreateModel(
			name='EventAudit',
			fields=[
				('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
				('event_id', models.CharField(max_length=200, unique=True)),
				('event_type', models.CharField(max_length=100)),
				('payload', models.JSONField()),
				('processed_at', models.DateTimeField(auto_now_add=True)),
				('is_duplicate', models.BooleanField(default=False)),
				('outcome', models.CharField(blank=True, default='', max_length=30)),
			],
		),
		migrations.CreateModel(
			name='ManualReviewItem',
			fields=[
				('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
				('kind', models.CharField(choices=[('unresolvable_event', 'Unresolvable payment event'), ('payment_mismatch', 'Payment intent mismatch'), ('stale_money_owed', 'Stale money owed entry'), ('refund_failed', 'Refund failed'), ('payout_blocked', 'Payout blocked')], max_length=30)),
				('reference', models.CharField(max_length=255)),
				('detail', models.TextField(blank=True, default='')),
				('payload', models.JSONField(blank=True, default=dict)),
				('resolved', models.BooleanField(default=False)),
				('created_at', models.DateTimeField(auto_now_add=True)),
			],
			options={
				'ordering': ['-created_at'],
				'indexes': [
					models.Index(fields=['kind', 'resolved'], name='payments_ma_kind_2a7f3b_idx'),
					models.Index(fields=['reference'], name='payments_ma_referen_9e4c1d_idx'),
				],
			},
		),
		migrations.CreateModel(
			name='MoneyOwed',
			fields=[
				('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
				('amount', models.DecimalField(decimal_places=2, max_digits=10)),
				('source', models.CharField(choices=[('checkout_purchase', 'Checkout Purchase'), ('commission', 'Commission Payout'), ('manual', 'Manual Adjustment')], max_length=30)),
				('reference', models.CharField(blank=True, default='', max_length=255)),
				('payment_intent_id', models.CharField(blank=True, max_length=255, null=True)),
				('metadata', models.JSONField(blank=True, default=dict)),
				('created_at', models.DateTimeField(default=django.utils.timezone.now)),
				('commission', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='money_owed', to='commissions.commissionrequest')),
				('payee', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='money_owed', to=settings.AUTH_USER_MODEL)),
			],
			options={
				'ordering': ['created_at', 'id'],
				'indexes': [
					models.Index(fields=['payee', 'created_at'], name='payments_mo_payee_i_5b8d2f_idx'),
					models.Index(fields=['payment_intent_id'], name='payments_mo_payment_3c6a9e_idx'),
				],
			},
		),
	]
