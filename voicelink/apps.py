from django.apps import AppConfig


class VoicelinkConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "voicelink"
    verbose_name = "VoiceLink billing"

    def ready(self):
        from voicelink import signals  # noqa: F401
