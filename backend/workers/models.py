from django.db import models
from django.utils import timezone


class Worker(models.Model):
    """Rider or errander registered through the bot, with availability and location"""
    ROLE_CHOICES = [
        ('rider', 'Rider'),
        ('errander', 'Errander'),
    ]

    # Stable chat identity
    external_id = models.CharField(max_length=64, unique=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES)

    # Registration details
    full_name = models.CharField(max_length=120)
    phone_number = models.CharField(max_length=20)
    bank_name = models.CharField(max_length=100, blank=True)
    account_number = models.CharField(max_length=20, blank=True)
    identity_number = models.CharField(max_length=20, blank=True)
    photo_file_id = models.CharField(max_length=255, blank=True)

    # Availability & location (soft state only, workers are never deleted)
    # is_online is what the worker chose with /online and /offline;
    # is_available also drops while an exclusive worker holds a task
    is_online = models.BooleanField(default=False)
    is_available = models.BooleanField(default=False)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)

    # Running average of customer ratings
    rating = models.FloatField(default=0.0)
    rating_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'workers'
        indexes = [
            models.Index(fields=['role', 'is_available'], name='workers_role_avail_idx'),
            models.Index(fields=['latitude', 'longitude'], name='workers_location_idx'),
        ]

    def __str__(self):
        return f"{self.full_name} ({self.role}) - {self.external_id}"

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def active_task_ids(self):
        """Ids of tasks currently assigned to this worker."""
        return list(
            self.tasks.filter(status__in=['accepted', 'in_progress'])
            .order_by('accepted_at')
            .values_list('id', flat=True)
        )
