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
            name='ActivityLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event', models.CharField(choices=[('commission_created', 'Commission Created'), ('artist_accepted', 'Artist Accepted'), ('artist_rejected', 'Artist Rejected'), ('checkout_created', 'Checkout Created'), ('payment_confirmed', 'Payment Confirmed'), ('delivered', 'Delivered'), ('revision_requested', 'Revision Requested'), ('approved', 'Approved'), ('payout_queued', 'Payout Queued'), ('payout_sent', 'Payout Sent'), ('payout_failed', 'Payout Failed'), ('refunded', 'Refunded'), ('cancelled', 'Cancelled'), ('expired', 'Expired'), ('deleted', 'Deleted')], max_length=40)),
                ('title', models.CharField(blank=True, max_length=200)),
                ('body', models.TextField(blank=True)),
                ('meta', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activity_actor', to=settings.AUTH_USER_MODEL)),
                ('commission', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activities', to='commissions.commissionrequest')),
                ('subject_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activity_subject', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['commission', 'created_at'], name='activity_ac_commiss_3f9a1c_idx'),
                    models.Index(fields=['event', 'created_at'], name='activity_ac_event_8b2d4e_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(max_length=60)),
                ('title', models.CharField(max_length=200)),
                ('message', models.TextField(blank=True)),
                ('meta_data', models.JSONField(blank=True, null=True)),
                ('is_read', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor_user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('commission', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notifications', to='commissions.commissionrequest')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'is_read'], name='activity_no_user_id_6c1e2a_idx'),
                ],
            },
        ),
    ]
