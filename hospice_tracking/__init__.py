"""
Hospice Delivery Tracking.
Keeps family-facing delivery status in step with an external multi-carrier
tracking provider.
"""

__version__ = "1.0.0"
