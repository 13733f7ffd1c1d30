from django.db import models
from django.db.models import Q

from voicelink.models.base import BaseModel


class CallRate(BaseModel):
    """Per-minute PSTN price for destinations starting with ``prefix``."""

    country_code = models.CharField(max_length=4)
    prefix = models.CharField(max_length=20, db_index=True)
    description = models.CharField(max_length=255)
    rate_per_minute = models.DecimalField(max_digits=6, decimal_places=4)
    is_active = models.BooleanField(default=True)

    class Meta(BaseModel.Meta):
        ordering = ["prefix", "id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(rate_per_minute__gt=0),
                name="call_rate_positive",
            ),
        ]

    def __str__(self):
        return f"{self.prefix} {self.description} @ {self.rate_per_minute}/min"
