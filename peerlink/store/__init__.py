"""
Negotiation stores.
"""

from __future__ import annotations

from .base import NegotiationStore, Subscription
from .http import HttpNegotiationStore
from .memory import InMemoryNegotiationStore

__all__ = ["HttpNegotiationStore", "InMemoryNegotiationStore", "NegotiationStore", "Subscription"]
