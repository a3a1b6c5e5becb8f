"""
Worker matching and offer negotiation service.

This module handles:
    - Building ordered worker offer queues for each negotiation round
    - Dispatching offers to workers (daisy chain, optional fan-out)
    - Accepting, declining and expiring offers
    - Widening the search radius and exhausting negotiations
    - Recovering offered tasks whose timers were lost
"""

from .offer_builder import build_offer_round
from .negotiator import (
    NegotiationResult,
    OfferResult,
    accept_offer,
    advance,
    decline_offer,
    dispatch_next_offers,
    expire_offer,
    reconcile_stale_offering,
    retry_negotiation,
    start_negotiation,
)

__all__ = [
    "NegotiationResult",
    "OfferResult",
    "accept_offer",
    "advance",
    "build_offer_round",
    "decline_offer",
    "dispatch_next_offers",
    "expire_offer",
    "reconcile_stale_offering",
    "retry_negotiation",
    "start_negotiation",
]
