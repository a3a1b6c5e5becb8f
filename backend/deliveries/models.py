import uuid

from django.db import models


class Task(models.Model):
    """An order (pickup -> dropoff) or errand (single location + description) placed by a customer"""

    KIND_CHOICES = [
        ('order', 'Order'),
        ('errand', 'Errand'),
    ]

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('offered', 'Offered'),
        ('accepted', 'Accepted'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('canceled', 'Canceled'),
        ('exhausted', 'No Workers Accepted'),
    ]

    # Which worker role serves each kind of task
    ROLE_FOR_KIND = {
        'order': 'rider',
        'errand': 'errander',
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)

    # Owning customer (chat id), immutable
    customer_id = models.CharField(max_length=64, db_index=True)

    worker = models.ForeignKey(
        'workers.Worker',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='tasks'
    )

    # Order pickup or errand location
    latitude = models.FloatField()
    longitude = models.FloatField()
    address = models.TextField(blank=True)

    # Order dropoff
    dropoff_latitude = models.FloatField(null=True, blank=True)
    dropoff_longitude = models.FloatField(null=True, blank=True)
    dropoff_address = models.TextField(blank=True)

    # Errand details
    description = models.TextField(blank=True)

    # Status & negotiation progress
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    negotiation_round = models.PositiveIntegerField(default=0)
    max_rounds = models.PositiveIntegerField(default=0)
    # First round of the current search; a customer retry starts a new one
    first_round = models.PositiveIntegerField(default=1)
    search_radius = models.FloatField(default=0)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True)
    customer_rating = models.PositiveSmallIntegerField(null=True, blank=True)

    class Meta:
        db_table = 'tasks'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='tasks_status_idx'),
        ]

    def __str__(self):
        return f"{self.get_kind_display()} #{self.id} - {self.customer_id} - {self.status}"

    @property
    def worker_role(self) -> str:
        return self.ROLE_FOR_KIND[self.kind]

    @property
    def point(self):
        return (self.latitude, self.longitude)


class Offer(models.Model):
    """One candidate worker's offer for a task within a negotiation round."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('declined', 'Declined'),
        ('expired', 'Expired'),
    ]

    task = models.ForeignKey(
        Task,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    worker = models.ForeignKey(
        'workers.Worker',
        on_delete=models.CASCADE,
        related_name='offers'
    )

    round = models.PositiveIntegerField()
    order = models.PositiveIntegerField()  # 0 = closest candidate of the round

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')

    # sent_at is null while the offer is queued behind other candidates
    sent_at = models.DateTimeField(null=True, blank=True)
    deadline = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'offers'
        ordering = ['round', 'order']
        constraints = [
            models.UniqueConstraint(
                fields=['task', 'worker', 'round'],
                name='unique_task_worker_round_offer'
            )
        ]

    def __str__(self):
        return f"Offer #{self.id} - Task {self.task_id} -> Worker {self.worker_id} ({self.status})"
