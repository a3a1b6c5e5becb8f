"""
Input validators for conversation steps.

Each validator takes the raw message text and returns the cleaned value
(or a dict of payload fields). Failures raise ValidationError whose message
is shown to the user as the re-prompt.
"""

import re
from typing import Any, Dict

from django.core import validators as django_validators
from django.core.exceptions import ValidationError as DjangoValidationError

from common.exceptions import ValidationError
from common.utils import is_valid_coordinate

PHONE_RE = re.compile(r"^\+?\d{10,15}$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{10}$")
IDENTITY_NUMBER_RE = re.compile(r"^\d{11}$")

YES_ANSWERS = {"yes", "y", "confirm"}
NO_ANSWERS = {"no", "n"}


def validate_full_name(text: str) -> str:
    name = " ".join(text.split())
    if len(name) < 3:
        raise ValidationError("Please enter a valid full name (at least 3 characters).")
    return name


def validate_email(text: str) -> str:
    email = text.strip()
    try:
        django_validators.validate_email(email)
    except DjangoValidationError:
        raise ValidationError("Please enter a valid email address.")
    return email.lower()


def validate_phone_number(text: str) -> str:
    phone = re.sub(r"[\s\-]", "", text)
    if not PHONE_RE.match(phone):
        raise ValidationError("Please enter a valid phone number (10 to 15 digits, optionally starting with +).")
    return phone


def validate_bank_details(text: str) -> Dict[str, str]:
    """Expects "Bank Name, Account Number"."""
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != 2 or not parts[0]:
        raise ValidationError("Please send your bank details as: Bank Name, Account Number")
    if not ACCOUNT_NUMBER_RE.match(parts[1]):
        raise ValidationError("Account number must be exactly 10 digits. Format: Bank Name, Account Number")
    return {"bank_name": parts[0], "account_number": parts[1]}


def validate_identity_number(text: str) -> str:
    number = text.strip()
    if not IDENTITY_NUMBER_RE.match(number):
        raise ValidationError("Identity number must be exactly 11 digits.")
    return number


def validate_photo(text: str) -> str:
    # The chat transport forwards uploaded photos as a file reference
    ref = text.strip()
    if not ref or " " in ref:
        raise ValidationError("Please upload a clear photo of yourself.")
    return ref


def parse_location(text: str) -> Dict[str, Any]:
    """Parse "lat,lng" or "lat,lng,address" into location fields."""
    parts = [part.strip() for part in text.split(",", 2)]
    if len(parts) < 2:
        raise ValidationError("Please send a location as: latitude,longitude[,address]")
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValidationError("Please send a location as: latitude,longitude[,address]")
    if not is_valid_coordinate(lat, lng):
        raise ValidationError("Latitude must be within -90..90 and longitude within -180..180.")
    address = parts[2] if len(parts) > 2 else ""
    return {"latitude": lat, "longitude": lng, "address": address}


def validate_description(text: str) -> str:
    description = text.strip()
    if not 5 <= len(description) <= 500:
        raise ValidationError("Please describe the errand in 5 to 500 characters.")
    return description


def validate_confirmation(text: str) -> bool:
    answer = text.strip().lower()
    if answer in YES_ANSWERS:
        return True
    if answer in NO_ANSWERS:
        return False
    raise ValidationError("Please reply yes to confirm or no to discard.")
