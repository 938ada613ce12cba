"""
Delivery store.
Fetch, list and update deliveries; status writes go through an atomic
conditional update so concurrent webhook pushes cannot double-apply.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from loguru import logger
from sqlalchemy import create_engine, or_, select, update
from sqlalchemy.orm import sessionmaker

from hospice_tracking.config import TrackingConfig
from hospice_tracking.models import Delivery, DeliveryCreate, DeliveryStatus, FamilyMember
from hospice_tracking.storage.tables import Base, DeliveryRow, FamilyMemberRow


# Columns staff and the tracking integration may write
UPDATABLE_FIELDS = {
    "item_name",
    "carrier",
    "tracking_number",
    "tracking_url",
    "status",
    "estimated_delivery",
    "estimated_delivery_date",
    "last_update",
    "delivered_at",
    "notes",
}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class DeliveryStore:
    """
    Relational delivery store.

    Features:
    - Lookup by id and by tracking number
    - Partial field updates
    - Compare-and-set status writes
    """

    def __init__(self, database_url: str):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, echo=False, future=True, connect_args=connect_args)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    @classmethod
    def from_config(cls, config: TrackingConfig) -> "DeliveryStore":
        return cls(config.database_url)

    def init_schema(self):
        """Create tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    def create(self, data: DeliveryCreate) -> Delivery:
        payload = {k: _plain(v) for k, v in data.model_dump().items()}
        if payload.get("status") == DeliveryStatus.DELIVERED.value:
            payload["delivered_at"] = datetime.utcnow()
        row = DeliveryRow(**payload)

        with self.SessionLocal() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"Delivery created: {row.id} ({row.item_name})")
            return Delivery.model_validate(row)

    def get(self, delivery_id: str) -> Optional[Delivery]:
        with self.SessionLocal() as session:
            row = session.get(DeliveryRow, delivery_id)
            return Delivery.model_validate(row) if row else None

    def get_by_tracking_number(self, tracking_number: str) -> Optional[Delivery]:
        """Exact match on tracking number; the newest delivery wins on duplicates."""
        with self.SessionLocal() as session:
            row = session.scalars(
                select(DeliveryRow)
                .where(DeliveryRow.tracking_number == tracking_number)
                .order_by(DeliveryRow.created_at.desc())
                .limit(1)
            ).first()
            return Delivery.model_validate(row) if row else None

    def list_deliveries(self, patient_id: Optional[str] = None) -> list[Delivery]:
        query = select(DeliveryRow).order_by(DeliveryRow.created_at.desc())
        if patient_id:
            query = query.where(DeliveryRow.patient_id == patient_id)

        with self.SessionLocal() as session:
            return [Delivery.model_validate(row) for row in session.scalars(query)]

    def list_pending_registration(self) -> list[Delivery]:
        """Deliveries with a tracking URL that have not been delivered yet."""
        query = (
            select(DeliveryRow)
            .where(DeliveryRow.tracking_url.is_not(None))
            .where(DeliveryRow.tracking_url != "")
            .where(or_(DeliveryRow.status.is_(None), DeliveryRow.status != DeliveryStatus.DELIVERED.value))
            .order_by(DeliveryRow.created_at)
        )
        with self.SessionLocal() as session:
            return [Delivery.model_validate(row) for row in session.scalars(query)]

    def update_fields(self, delivery_id: str, **fields) -> Optional[Delivery]:
        """Write the given columns. Returns the updated delivery, or None if missing."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update delivery fields: {', '.join(sorted(unknown))}")

        with self.SessionLocal() as session:
            row = session.get(DeliveryRow, delivery_id)
            if row is None:
                return None

            for key, value in fields.items():
                setattr(row, key, _plain(value))
            row.updated_at = datetime.utcnow()

            session.commit()
            session.refresh(row)
            return Delivery.model_validate(row)

    def update_status_if_changed(
        self,
        delivery_id: str,
        status: DeliveryStatus,
        extra: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Atomically set the status unless it already equals ``status``.

        Stamps ``last_update`` and, for delivered, ``delivered_at``.

        Returns:
            True if a row was changed
        """
        status = _plain(status)
        now = datetime.utcnow()

        values = {"status": status, "last_update": now, "updated_at": now}
        if status == DeliveryStatus.DELIVERED.value:
            values["delivered_at"] = now
        for key, value in (extra or {}).items():
            if key not in UPDATABLE_FIELDS:
                raise ValueError(f"Cannot update delivery field: {key}")
            values[key] = _plain(value)

        stmt = (
            update(DeliveryRow)
            .where(DeliveryRow.id == delivery_id)
            .where(or_(DeliveryRow.status.is_(None), DeliveryRow.status != status))
            .values(**values)
        )

        with self.SessionLocal() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount > 0

    def delete(self, delivery_id: str) -> bool:
        with self.SessionLocal() as session:
            row = session.get(DeliveryRow, delivery_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            logger.info(f"Delivery deleted: {delivery_id}")
            return True


class ContactDirectory:
    """Family contact lookup for provider notification emails."""

    def __init__(self, store: DeliveryStore):
        self.store = store

    def add_family_member(
        self,
        patient_id: str,
        name: str,
        email: Optional[str] = None,
        is_primary: bool = False,
    ) -> FamilyMember:
        row = FamilyMemberRow(patient_id=patient_id, name=name, email=email, is_primary=is_primary)
        with self.store.SessionLocal() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return FamilyMember.model_validate(row)

    def notification_email(self, patient_id: Optional[str]) -> Optional[str]:
        """Email of the primary family member, else of any member with one."""
        if not patient_id:
            return None

        query = (
            select(FamilyMemberRow.email)
            .where(FamilyMemberRow.patient_id == patient_id)
            .where(FamilyMemberRow.email.is_not(None))
            .where(FamilyMemberRow.email != "")
            .order_by(FamilyMemberRow.is_primary.desc(), FamilyMemberRow.name)
            .limit(1)
        )
        with self.store.SessionLocal() as session:
            return session.scalars(query).first()
