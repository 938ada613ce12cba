"""
Storage module.
Relational store for deliveries and the family contacts used for notifications.
"""

from hospice_tracking.storage.tables import Base, DeliveryRow, FamilyMemberRow
from hospice_tracking.storage.delivery_store import DeliveryStore, ContactDirectory

__all__ = ["Base", "DeliveryRow", "FamilyMemberRow", "DeliveryStore", "ContactDirectory"]
