from django.db import models
from django.utils import timezone


class Customer(models.Model):
    """Contact details a customer registers so workers can reach them."""

    # Stable chat identity, the same id tasks carry as customer_id
    external_id = models.CharField(max_length=64, unique=True)

    full_name = models.CharField(max_length=120)
    email = models.EmailField(max_length=254)
    phone_number = models.CharField(max_length=20)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'customers'

    def __str__(self):
        return f"{self.full_name} - {self.external_id}"
