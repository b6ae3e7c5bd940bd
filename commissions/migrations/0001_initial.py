import commissions.models
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('accounts', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CommissionRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('requirements', models.TextField()),
                ('artist_price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('customer_price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('status', models.CharField(choices=[('pending_artist', 'Pending Artist'), ('rejected_by_artist', 'Rejected By Artist'), ('requested', 'Requested'), ('in_progress', 'In Progress'), ('delivered', 'Delivered'), ('approved', 'Approved'), ('cron_pending', 'Payout Queued'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending_artist', max_length=30)),
                ('revision_count', models.PositiveIntegerField(default=0)),
                ('max_revisions', models.PositiveIntegerField(default=commissions.models.default_max_revisions)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('stripe_session_id', models.CharField(blank=True, max_length=255, null=True)),
                ('stripe_payment_intent_id', models.CharField(blank=True, max_length=255, null=True)),
                ('stripe_transfer_id', models.CharField(blank=True, max_length=255, null=True)),
                ('stripe_refund_id', models.CharField(blank=True, max_length=255, null=True)),
                ('finished_asset_url', models.URLField(blank=True, default='', max_length=500)),
                ('preview_asset_url', models.URLField(blank=True, default='', max_length=500)),
                ('guide_asset_url', models.URLField(blank=True, default='', max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('artist', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='commissions_received', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='commissions_requested', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['customer', 'created_at'], name='commissions_custome_4b1f0e_idx'),
                    models.Index(fields=['artist', 'created_at'], name='commissions_artist__9c3a2d_idx'),
                    models.Index(fields=['status'], name='commissions_status_5e7d1a_idx'),
                    models.Index(fields=['stripe_session_id'], name='commissions_stripe__1a8c4f_idx'),
                    models.Index(fields=['stripe_payment_intent_id'], name='commissions_stripe__7d2e9b_idx'),
                ],
            },
        ),
    ]
