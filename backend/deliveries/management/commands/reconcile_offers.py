from django.core.management.base import BaseCommand
from services.matching import reconcile_stale_offering


class Command(BaseCommand):
    help = "Recover offered tasks without a live offer (lost timers) and move their negotiation on."

    def handle(self, *args, **options):
        reconciled = reconcile_stale_offering()

        self.stdout.write(
            self.style.SUCCESS(f"Reconciled {reconciled} offered task(s).")
        )
