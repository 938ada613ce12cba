"""
Tracking integration module.
Registers shipments with the external multi-carrier tracking provider,
normalizes its status vocabulary and reconciles webhook pushes.
"""

from hospice_tracking.tracking.provider_api import ProviderError, TrackingProviderAPI
from hospice_tracking.tracking.tracking_manager import TrackingManager
from hospice_tracking.tracking.webhook import WebhookReconciler

__all__ = ["ProviderError", "TrackingProviderAPI", "TrackingManager", "WebhookReconciler"]
