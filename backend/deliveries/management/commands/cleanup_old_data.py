from django.core.management.base import BaseCommand
from django.utils import timezone
from datetime import timedelta
from deliveries.models import Offer
import logging

logger = logging.getLogger(__name__)

# Tasks themselves are kept as an audit trail; only their answered offers go
RESOLVED_TASK_STATUSES = ['completed', 'canceled']


class Command(BaseCommand):
    help = "Clean up answered offers of completed/canceled tasks."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            default=30,
            help="Delete offers older than this many days (default: 30).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted without actually deleting.",
        )

    def handle(self, *args, **options):
        days = options["days"]
        dry_run = options["dry_run"]
        cutoff = timezone.now() - timedelta(days=days)

        old_offers = Offer.objects.filter(
            task__created_at__lt=cutoff,
            task__status__in=RESOLVED_TASK_STATUSES,
        ).exclude(status='pending')
        offers_count = old_offers.count()

        if dry_run:
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: Would delete {offers_count} offers of tasks older than {days} days."
                )
            )
        else:
            old_offers.delete()
            logger.info("Cleaned up %d old offers", offers_count)
            self.stdout.write(
                self.style.SUCCESS(
                    f"Deleted {offers_count} old offers of tasks older than {days} days."
                )
            )
