from decimal import Decimal

from django.db import models
from django.db.models import Q

from voicelink.models.base import BaseModel
from voicelink.models.subscriber import Subscriber


class CallKind(models.TextChoices):
    VOICE = "voice", "App voice"
    VIDEO = "video", "App video"
    PSTN = "pstn", "Phone network"


class CallRecord(BaseModel):
    """
    One outbound call attempt.

    Created as INITIATED by call admission and mutated exactly once by
    settlement into COMPLETED or FAILED. Settlement finds the record through
    the unique ``provider_call_sid`` index.
    """

    class Status(models.TextChoices):
        INITIATED = "initiated", "Initiated"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    subscriber = models.ForeignKey(
        Subscriber,
        on_delete=models.PROTECT,
        related_name="calls",
    )
    destination_number = models.CharField(max_length=64)
    contact_name = models.CharField(max_length=255, blank=True, default="")
    kind = models.CharField(max_length=8, choices=CallKind.choices)
    provider_call_sid = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Provider call id, set once the PSTN leg has been placed.",
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.INITIATED,
    )
    provider_status = models.CharField(
        max_length=20,
        blank=True,
        default="",
        help_text="Terminal status as reported by the provider (busy, no-answer, ...).",
    )
    duration_seconds = models.PositiveIntegerField(default=0)
    estimated_cost = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal("0.00")
    )
    cost = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0.00"))
    settled_at = models.DateTimeField(null=True, blank=True)

    class Meta(BaseModel.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=["provider_call_sid"],
                condition=Q(provider_call_sid__isnull=False),
                name="uniq_call_provider_sid",
            ),
        ]
        indexes = [
            models.Index(fields=["subscriber", "created_at"], name="idx_call_subscriber"),
            models.Index(fields=["status", "kind"], name="idx_call_status_kind"),
        ]

    def __str__(self):
        return (
            f"Call {self.id} | {self.kind} | {self.destination_number} | "
            f"{self.status} | {self.cost}"
        )

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @classmethod
    def get_stale_pstn_calls(cls, cutoff):
        """PSTN calls admitted before ``cutoff`` that never got a provider sid."""
        return cls.objects.filter(
            kind=CallKind.PSTN,
            status=cls.Status.INITIATED,
            provider_call_sid__isnull=True,
            created_at__lt=cutoff,
        )

    @classmethod
    def get_unsettled_pstn_calls(cls, cutoff):
        """PSTN calls placed before ``cutoff`` that still wait for settlement."""
        return cls.objects.filter(
            kind=CallKind.PSTN,
            status=cls.Status.INITIATED,
            provider_call_sid__isnull=False,
            created_at__lt=cutoff,
        )
