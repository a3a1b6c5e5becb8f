from django.core.management.base import BaseCommand
from conversations.store import SessionStore


class Command(BaseCommand):
    help = "Delete expired conversation sessions in bounded batches."

    def add_arguments(self, parser):
        parser.add_argument(
            "--batch-size",
            type=int,
            default=None,
            help="Maximum sessions deleted per batch (default: SESSION_SWEEP_BATCH_SIZE).",
        )
        parser.add_argument(
            "--all",
            action="store_true",
            help="Keep sweeping batches until no expired session is left.",
        )

    def handle(self, *args, **options):
        store = SessionStore()
        total = 0
        while True:
            deleted = store.sweep_expired(options["batch_size"])
            total += deleted
            if not options["all"] or not deleted:
                break

        self.stdout.write(
            self.style.SUCCESS(f"Deleted {total} expired session(s).")
        )
