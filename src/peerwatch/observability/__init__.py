"""
Observability Module
====================

Delivery of pipeline output to display clients.

This module provides:
    - EventBroadcaster: Fan-out of detection events and summaries
    - Subscription: Bounded per-display queue (drops oldest)

DESIGN RULES:
    - Does NOT influence the pipeline
    - The core emits; displays never pull from the pipeline directly
"""

from peerwatch.observability.broadcast import EventBroadcaster, Subscription


__all__ = [
    "EventBroadcaster",
    "Subscription",
]
