"""
Conversation flows as explicit finite-state machines.

A flow is an ordered list of steps. The session payload stores the flow
name and `current_step`; each accepted answer is written into the payload
and the pointer moves to the next step.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from conversations import validators


@dataclass(frozen=True)
class FlowStep:
    """One prompt of a flow and how to read its answer."""
    name: str
    prompt: str
    validator: Callable[[str], Any]
    # Payload key for scalar answers; dict answers are merged as they are
    field: Optional[str] = None

    def read(self, text: str) -> Dict[str, Any]:
        value = self.validator(text)
        if isinstance(value, dict):
            return value
        return {self.field or self.name: value}


@dataclass(frozen=True)
class FlowDefinition:
    name: str
    intro: str
    steps: Tuple[FlowStep, ...]
    # "worker" and "customer" flows register the user, "task" flows create a task
    kind: str
    target: str

    @property
    def first_step(self) -> FlowStep:
        return self.steps[0]

    def step(self, name: str) -> FlowStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    def next_step(self, name: str) -> Optional[FlowStep]:
        names = [step.name for step in self.steps]
        index = names.index(name) + 1
        return self.steps[index] if index < len(self.steps) else None


REGISTRATION_STEPS = (
    FlowStep("full_name", "Please enter your full name:", validators.validate_full_name),
    FlowStep("phone_number", "Please enter your phone number:", validators.validate_phone_number),
    FlowStep(
        "bank_details",
        "Please enter your bank details in the format: Bank Name, Account Number",
        validators.validate_bank_details,
    ),
    FlowStep("identity_number", "Please enter your 11-digit identity number:", validators.validate_identity_number),
    FlowStep("photo", "Please upload a clear photo of yourself:", validators.validate_photo, field="photo_file_id"),
)


CUSTOMER_REGISTRATION_STEPS = (
    FlowStep("full_name", "Please enter your full name:", validators.validate_full_name),
    FlowStep("email", "Please enter your email address:", validators.validate_email),
    FlowStep("phone_number", "Please share your phone number (e.g. +2348012345678):", validators.validate_phone_number),
)


def _location_step(name: str, prompt: str, prefix: str = "") -> FlowStep:
    def read_location(text: str) -> Dict[str, Any]:
        location = validators.parse_location(text)
        return {f"{prefix}{key}": value for key, value in location.items()}

    return FlowStep(name, prompt, read_location)


CONFIRM_STEP = FlowStep(
    "confirm",
    "Reply yes to confirm or no to discard.",
    validators.validate_confirmation,
    field="confirmed",
)


FLOWS: Dict[str, FlowDefinition] = {
    flow.name: flow
    for flow in (
        FlowDefinition(
            name="register_rider",
            intro="Let's get you registered as a rider.",
            steps=REGISTRATION_STEPS,
            kind="worker",
            target="rider",
        ),
        FlowDefinition(
            name="register_errander",
            intro="Let's get you registered as an errander.",
            steps=REGISTRATION_STEPS,
            kind="worker",
            target="errander",
        ),
        FlowDefinition(
            name="register_customer",
            intro="Welcome to customer registration! Workers who take your tasks will see these contact details.",
            steps=CUSTOMER_REGISTRATION_STEPS,
            kind="customer",
            target="customer",
        ),
        FlowDefinition(
            name="create_order",
            intro="Let's create a delivery order.",
            steps=(
                _location_step("pickup", "Send the pickup location as: latitude,longitude[,address]"),
                _location_step(
                    "dropoff",
                    "Send the dropoff location as: latitude,longitude[,address]",
                    prefix="dropoff_",
                ),
                CONFIRM_STEP,
            ),
            kind="task",
            target="order",
        ),
        FlowDefinition(
            name="create_errand",
            intro="Let's create an errand.",
            steps=(
                _location_step("location", "Send the errand location as: latitude,longitude[,address]"),
                FlowStep("description", "Describe the errand:", validators.validate_description),
                CONFIRM_STEP,
            ),
            kind="task",
            target="errand",
        ),
    )
}


def summarize(flow: FlowDefinition, payload: Dict[str, Any]) -> str:
    """Summary shown before the confirm step of a task flow."""

    def place(prefix: str = "") -> str:
        address = payload.get(f"{prefix}address")
        coords = f"{payload.get(f'{prefix}latitude')}, {payload.get(f'{prefix}longitude')}"
        return f"{address} ({coords})" if address else coords

    if flow.target == "order":
        return f"Order summary:\nPickup: {place()}\nDropoff: {place('dropoff_')}"
    return f"Errand summary:\nLocation: {place()}\nDescription: {payload.get('description', '')}"
