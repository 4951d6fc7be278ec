"""
SDK for Webhook Monitor.

Provides a webhook client that records every delivery in the request ledger.
"""

from .webhook_client import DeliveryResult, MonitoredWebhook

__all__ = ["DeliveryResult", "MonitoredWebhook"]
