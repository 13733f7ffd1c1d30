from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from voicelink.models import CallRate
from voicelink.services.rates import invalidate_rate_cache


@receiver(post_save, sender=CallRate)
@receiver(post_delete, sender=CallRate)
def call_rate_changed(sender, instance, **kwargs):
    invalidate_rate_cache()
