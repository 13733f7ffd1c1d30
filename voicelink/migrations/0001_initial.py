import uuid
from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Subscriber",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("uuid", models.UUIDField(db_index=True, default=uuid.uuid4, editable=False, unique=True)),
                ("phone", models.CharField(max_length=20, unique=True)),
                ("billing_identity", models.CharField(blank=True, default="", help_text="Provider-side calling identity used when placing calls.", max_length=128)),
                ("balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10)),
                ("is_verified", models.BooleanField(default=False)),
                ("language", models.CharField(default="en", max_length=8)),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="CallRate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("country_code", models.CharField(max_length=4)),
                ("prefix", models.CharField(db_index=True, max_length=20)),
                ("description", models.CharField(max_length=255)),
                ("rate_per_minute", models.DecimalField(decimal_places=4, max_digits=6)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["prefix", "id"],
                "abstract": False,
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("rate_per_minute__gt", 0)), name="call_rate_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CallRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("destination_number", models.CharField(max_length=64)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("kind", models.CharField(choices=[("voice", "App voice"), ("video", "App video"), ("pstn", "Phone network")], max_length=8)),
                ("provider_call_sid", models.CharField(blank=True, help_text="Provider call id, set once the PSTN leg has been placed.", max_length=64, null=True)),
                ("status", models.CharField(choices=[("initiated", "Initiated"), ("completed", "Completed"), ("failed", "Failed")], default="initiated", max_length=10)),
                ("provider_status", models.CharField(blank=True, default="", help_text="Terminal status as reported by the provider (busy, no-answer, ...).", max_length=20)),
                ("duration_seconds", models.PositiveIntegerField(default=0)),
                ("estimated_cost", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=8)),
                ("cost", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=8)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("subscriber", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="calls", to="voicelink.subscriber")),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(fields=["subscriber", "created_at"], name="idx_call_subscriber"),
                    models.Index(fields=["status", "kind"], name="idx_call_status_kind"),
                ],
                "constraints": [
                    models.UniqueConstraint(condition=models.Q(("provider_call_sid__isnull", False)), fields=("provider_call_sid",), name="uniq_call_provider_sid"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("transaction_type", models.CharField(choices=[("recharge", "Recharge"), ("call_deduction", "Call deduction")], max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("payment_method", models.CharField(blank=True, choices=[("bkash", "bKash"), ("nagad", "Nagad"), ("card", "Card")], default="", max_length=10)),
                ("reference_id", models.CharField(blank=True, default="", help_text="Payment provider reference for recharges.", max_length=128)),
                ("idempotency_key", models.UUIDField(blank=True, editable=False, help_text="Client-generated UUID for idempotent recharges.", null=True, unique=True)),
                ("call_record", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="charges", to="voicelink.callrecord")),
                ("subscriber", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="transactions", to="voicelink.subscriber")),
            ],
            options={
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(fields=["subscriber", "transaction_type"], name="idx_tx_subscriber_type"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount", 0), _negated=True), name="transaction_non_zero_amount"),
                    models.UniqueConstraint(condition=models.Q(("call_record__isnull", False)), fields=("call_record",), name="uniq_transaction_call_record"),
                ],
            },
        ),
    ]
