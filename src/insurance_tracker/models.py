"""Shared data structures used across all components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    SQLite drops tzinfo on the way back; naive values are read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


class InsuranceRecord(Base):
    __tablename__ = "insurance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vehicle_name: Mapped[str] = mapped_column(String(128), nullable=False)
    plate_id: Mapped[str] = mapped_column(String(15), unique=True, index=True, nullable=False)
    expiry_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    registered_by: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"InsuranceRecord(plate_id={self.plate_id!r}, vehicle_name={self.vehicle_name!r})"


class Tier(Enum):
    EXPIRED = "expired"
    URGENT = "urgent"
    WARNING = "warning"
    ACTIVE = "active"

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]


_TIER_LABELS = {
    Tier.EXPIRED: "❌ EXPIRED",
    Tier.URGENT: "\U0001f6a8 URGENT",
    Tier.WARNING: "⚠️ WARNING",
    Tier.ACTIVE: "✅ ACTIVE",
}


@dataclass
class Classification:
    days_left: int  # signed; <= 0 means expired
    tier: Tier


@dataclass
class Page:
    records: list[InsuranceRecord]
    index: int  # zero-based
    total: int  # total page count

    @property
    def number(self) -> int:
        return self.index + 1

    @property
    def is_first(self) -> bool:
        return self.index == 0


@dataclass
class PageStyle:
    """Trigger metadata that parameterizes page rendering."""

    title: str
    origin: str  # page-1 footer, formatted with {count} and {timestamp}
    headline: str | None = None  # page-1 banner, formatted with {count}, {plural}, {timestamp}
    preamble: str | None = None  # page-1 mention preamble, channel alerts only
    later_title: str | None = None  # title stem for pages 2..n, defaults to title


@dataclass
class SlackMessage:
    channel_id: str  # raw channel ID
    sender_id: str  # raw user ID
    ts: str | None = None
    mentions: list[str] = field(default_factory=list)  # mentioned user IDs, sender/bot excluded


@dataclass
class ButtonClick:
    user_id: str
    action_id: str  # insurance_list_next / insurance_list_prev
    session: str  # listing session the button belongs to
    respond: Callable[..., object]


@dataclass
class CommandRequest:
    command: str  # e.g. "/insurance-new"
    user_id: str
    user_name: str
    channel_id: str
    text: str = ""
    team_id: str | None = None
    trigger_id: str | None = None


@dataclass
class AlertOutcome:
    record_count: int
    page_count: int
