"""Expiry classification and validity adjustments.

All day arithmetic happens in the configured zone, never the host's.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

from insurance_tracker.errors import InvalidAdjustment
from insurance_tracker.models import Classification, InsuranceRecord, Tier
from insurance_tracker.store import RecordStore

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d %b %Y"
TIMESTAMP_FORMAT = "%d %b %Y %I:%M %p"

_SECONDS_PER_DAY = 86400


def days_left(expiry_at: datetime, now: datetime, tz: tzinfo) -> int:
    """Whole days remaining until ``expiry_at``, rounded up; negative once past."""
    # Same tzinfo on both sides gives a wall-clock difference in ``tz``.
    delta = expiry_at.astimezone(tz) - now.astimezone(tz)
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def tier_for(days: int) -> Tier:
    if days <= 0:
        return Tier.EXPIRED
    if days <= 3:
        return Tier.URGENT
    if days <= 7:
        return Tier.WARNING
    return Tier.ACTIVE


def classify(expiry_at: datetime, now: datetime, tz: tzinfo) -> Classification:
    days = days_left(expiry_at, now, tz)
    return Classification(days_left=days, tier=tier_for(days))


def is_expiring(record: InsuranceRecord, now: datetime, tz: tzinfo) -> bool:
    """True for URGENT and EXPIRED records (three days or less)."""
    return days_left(record.expiry_at, now, tz) <= 3


def shift_days(moment: datetime, days: int, tz: tzinfo) -> datetime:
    """Move ``moment`` by whole calendar days in ``tz``, returning UTC."""
    return (moment.astimezone(tz) + timedelta(days=days)).astimezone(timezone.utc)


def format_date(moment: datetime, tz: tzinfo) -> str:
    return moment.astimezone(tz).strftime(DATE_FORMAT)


def format_timestamp(moment: datetime, tz: tzinfo) -> str:
    return moment.astimezone(tz).strftime(TIMESTAMP_FORMAT)


@dataclass
class Adjustment:
    record: InsuranceRecord
    old_expiry: datetime
    new_expiry: datetime
    days: int  # magnitude of the change
    days_left: int


def extend_validity(
    store: RecordStore, plate_id: str, days: int, *, now: datetime, tz: tzinfo
) -> Adjustment:
    record = store.find_by_plate(plate_id)
    old_expiry = record.expiry_at
    new_expiry = shift_days(old_expiry, days, tz)
    record = store.update(plate_id, new_expiry)
    return Adjustment(
        record=record,
        old_expiry=old_expiry,
        new_expiry=new_expiry,
        days=days,
        days_left=days_left(new_expiry, now, tz),
    )


def reduce_validity(
    store: RecordStore, plate_id: str, days: int, *, now: datetime, tz: tzinfo
) -> Adjustment:
    """Pull the expiry ``days`` earlier.

    Raises :class:`InvalidAdjustment` without touching the store when the
    result would already be past.
    """
    record = store.find_by_plate(plate_id)
    old_expiry = record.expiry_at
    new_expiry = shift_days(old_expiry, -days, tz)
    remaining = days_left(new_expiry, now, tz)
    if remaining < 0:
        logger.info(
            "Rejected reduction of %s by %d days (would leave %d)", plate_id, days, remaining
        )
        raise InvalidAdjustment(
            days, format_date(old_expiry, tz), format_date(new_expiry, tz), remaining
        )

    record = store.update(plate_id, new_expiry)
    return Adjustment(
        record=record,
        old_expiry=old_expiry,
        new_expiry=new_expiry,
        days=days,
        days_left=remaining,
    )
