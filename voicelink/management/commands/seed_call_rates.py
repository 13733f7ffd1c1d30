from django.core.management.base import BaseCommand

from voicelink.models import CallRate
from voicelink.services import RateTable

DEFAULT_RATE_SHEET = [
    {
        "country_code": "BD",
        "prefix": "+880",
        "description": "Bangladesh Mobile",
        "rate_per_minute": "0.35",
    },
    {
        "country_code": "BD",
        "prefix": "+8801",
        "description": "Bangladesh Mobile",
        "rate_per_minute": "0.35",
    },
]


class Command(BaseCommand):
    help = "Installs the default call rate sheet when no rates exist"

    def add_arguments(self, parser):
        parser.add_argument(
            "--force",
            action="store_true",
            help="Add every missing prefix even if other rates already exist.",
        )

    def handle(self, *args, **options):
        if CallRate.objects.exists() and not options["force"]:
            self.stdout.write("Call rates already present, nothing to do.")
            return

        rate_table = RateTable()
        created = 0
        for entry in DEFAULT_RATE_SHEET:
            if CallRate.objects.filter(prefix=entry["prefix"]).exists():
                continue
            rate_table.register(**entry)
            created += 1

        self.stdout.write(self.style.SUCCESS(f"Seeded {created} call rate(s)."))
