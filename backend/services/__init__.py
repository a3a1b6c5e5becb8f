"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket/chat layers.

Modules:
    - matching: Worker matching and offer negotiation
    - task_management: Task lifecycle after acceptance (start, complete, cancel, rate)
"""

# Expose commonly used functions at package level
from .matching import (
    accept_offer,
    decline_offer,
    expire_offer,
    reconcile_stale_offering,
    retry_negotiation,
    start_negotiation,
)
from .task_management import (
    cancel_task,
    complete_task,
    rate_task,
    start_task,
)

__all__ = [
    # Matching
    "accept_offer",
    "decline_offer",
    "expire_offer",
    "reconcile_stale_offering",
    "retry_negotiation",
    "start_negotiation",
    # Task management
    "cancel_task",
    "complete_task",
    "rate_task",
    "start_task",
]
