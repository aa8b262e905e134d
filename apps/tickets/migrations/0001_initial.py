# Generated manually

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Ticket',
            fields=[
                ('id', models.CharField(help_text='Public ticket id printed on the QR code', max_length=32, primary_key=True, serialize=False)),
                ('order_id', models.CharField(db_index=True, max_length=64)),
                ('attendee_name', models.CharField(max_length=255)),
                ('attendee_phone', models.CharField(max_length=20)),
                ('category', models.CharField(db_index=True, max_length=50)),
                ('price', models.PositiveIntegerField(help_text='Whole currency units')),
                ('client_name', models.CharField(max_length=255)),
                ('client_phone', models.CharField(max_length=20)),
                ('payment_method', models.CharField(blank=True, max_length=20, null=True)),
                ('qr_payload', models.TextField(blank=True, default='')),
                ('artifact_ref', models.CharField(blank=True, help_text='Rendered PDF path relative to MEDIA_ROOT', max_length=500, null=True)),
                ('used', models.BooleanField(db_index=True, default=False)),
                ('used_at', models.DateTimeField(blank=True, null=True)),
                ('sent_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='issued_tickets', to=settings.AUTH_USER_MODEL)),
                ('scanned_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='scanned_tickets', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Ticket',
                'verbose_name_plural': 'Tickets',
                'db_table': 'tickets',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['created_by', 'created_at'], name='tickets_issuer_created_idx')],
            },
        ),
        migrations.CreateModel(
            name='ScanLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('ticket_id', models.CharField(db_index=True, max_length=255)),
                ('scanned_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('result', models.CharField(choices=[('success', 'Success'), ('failed', 'Failed')], max_length=10)),
                ('failure_reason', models.CharField(blank=True, choices=[('not_found', 'Not found'), ('already_used', 'Already used')], max_length=20, null=True)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True, null=True)),
                ('scanned_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='scan_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Scan log entry',
                'verbose_name_plural': 'Scan log',
                'db_table': 'scan_logs',
                'ordering': ['-scanned_at'],
            },
        ),
    ]
