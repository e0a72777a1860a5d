"""Persistent insurance record store backed by SQLAlchemy.

One short-lived session per operation; the engine's connection pool is
shared across the bolt worker threads and the scheduler thread.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from sqlalchemy import create_engine, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from insurance_tracker.errors import DuplicatePlate, NotFound, ValidationError
from insurance_tracker.models import Base, InsuranceRecord, utcnow

logger = logging.getLogger(__name__)

PLATE_PATTERN = re.compile(r"^[A-Za-z0-9-]{2,15}$")
PLATE_EXAMPLE = "MH01-AB-1234"


def validate_plate(plate_id: str) -> None:
    if not PLATE_PATTERN.match(plate_id or ""):
        raise ValidationError(
            "Please use 2-15 alphanumeric characters (hyphens allowed)",
            fields=[("Your Input", plate_id or "(empty)"), ("Example", PLATE_EXAMPLE)],
        )


def _engine_for(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty DB.
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, future=True, **kwargs)
    return create_engine(database_url, future=True, pool_pre_ping=True)


class RecordStore:
    """CRUD access to :class:`InsuranceRecord` rows keyed by plate."""

    def __init__(self, database_url: str) -> None:
        self._engine = _engine_for(database_url)
        self._sessions = sessionmaker(
            bind=self._engine, autoflush=False, expire_on_commit=False, future=True
        )

    # -- lifecycle -----------------------------------------------------------

    def ping(self) -> None:
        """Raise ``SQLAlchemyError`` if the database cannot be reached."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connected successfully")

    def init_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        logger.info("Closing database engine")
        self._engine.dispose()

    # -- operations ----------------------------------------------------------

    def create(
        self,
        vehicle_name: str,
        plate_id: str,
        expiry_at: datetime,
        registered_by: str,
    ) -> InsuranceRecord:
        validate_plate(plate_id)
        if not vehicle_name or not vehicle_name.strip():
            raise ValidationError("Vehicle name must not be empty")

        now = utcnow()
        record = InsuranceRecord(
            vehicle_name=vehicle_name.strip(),
            plate_id=plate_id,
            expiry_at=expiry_at,
            registered_by=registered_by,
            updated_at=now,
        )
        with self._sessions() as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("DUPLICATE %s by %s", plate_id, registered_by)
                raise DuplicatePlate(plate_id)
        logger.info("INSERT %s (%s) by %s", record.vehicle_name, plate_id, registered_by)
        return record

    def find_by_plate(self, plate_id: str) -> InsuranceRecord:
        with self._sessions() as session:
            record = session.scalars(
                select(InsuranceRecord).where(InsuranceRecord.plate_id == plate_id)
            ).first()
        if record is None:
            raise NotFound(plate_id)
        return record

    def search(self, query: str, limit: int = 25) -> list[InsuranceRecord]:
        """Records whose name or plate contains ``query``, case-insensitively."""
        stmt = select(InsuranceRecord)
        if query:
            stmt = stmt.where(
                or_(
                    InsuranceRecord.vehicle_name.icontains(query, autoescape=True),
                    InsuranceRecord.plate_id.icontains(query, autoescape=True),
                )
            )
        stmt = stmt.order_by(InsuranceRecord.expiry_at).limit(limit)
        with self._sessions() as session:
            return list(session.scalars(stmt))

    def update(self, plate_id: str, new_expiry_at: datetime) -> InsuranceRecord:
        with self._sessions() as session:
            record = session.scalars(
                select(InsuranceRecord).where(InsuranceRecord.plate_id == plate_id)
            ).first()
            if record is None:
                raise NotFound(plate_id)
            record.expiry_at = new_expiry_at
            record.updated_at = utcnow()
            session.commit()
        logger.info("UPDATE %s (%s) expiry -> %s", record.vehicle_name, plate_id, new_expiry_at.isoformat())
        return record

    def delete(self, plate_id: str) -> InsuranceRecord:
        with self._sessions() as session:
            record = session.scalars(
                select(InsuranceRecord).where(InsuranceRecord.plate_id == plate_id)
            ).first()
            if record is None:
                raise NotFound(plate_id)
            session.delete(record)
            session.commit()
        logger.info("DELETE %s (%s)", record.vehicle_name, plate_id)
        return record

    def list_all(self, sort_by_expiry: bool = False) -> list[InsuranceRecord]:
        stmt = select(InsuranceRecord)
        if sort_by_expiry:
            stmt = stmt.order_by(InsuranceRecord.expiry_at, InsuranceRecord.id)
        else:
            stmt = stmt.order_by(InsuranceRecord.id)
        with self._sessions() as session:
            return list(session.scalars(stmt))
