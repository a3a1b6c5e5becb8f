import logging
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction

from common.exceptions import ValidationError
from customers.models import Customer

logger = logging.getLogger(__name__)


def find_customer(external_id: str) -> Optional[Customer]:
    return Customer.objects.filter(external_id=str(external_id)).first()


def register_customer(external_id: str, details: Dict[str, Any]) -> Customer:
    """Create the customer record once the registration flow completes."""
    try:
        with transaction.atomic():
            customer = Customer.objects.create(
                external_id=str(external_id),
                full_name=details.get("full_name") or "",
                email=details.get("email") or "",
                phone_number=details.get("phone_number") or "",
            )
    except IntegrityError:
        raise ValidationError("You are already registered as a customer")

    logger.info("Registered customer %s", customer.external_id)
    return customer


def customer_contact(external_id: str) -> Optional[Dict[str, str]]:
    """Name and phone number handed to the worker who takes the customer's task."""
    customer = find_customer(external_id)
    if customer is None:
        return None
    return {
        "name": customer.full_name,
        "phone_number": customer.phone_number,
        "email": customer.email,
    }
