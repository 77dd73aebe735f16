"""Publish/subscribe client module."""

from .client import MATCH_ALL, IPubSubClient, MessageHandler, subscription_filters
from .paho_client import PahoClient

__all__ = [
    "IPubSubClient",
    "MATCH_ALL",
    "MessageHandler",
    "PahoClient",
    "subscription_filters",
]
