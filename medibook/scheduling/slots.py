"""Slot catalogue and operating-timezone arithmetic.

All slot math happens in the single operating timezone and is converted to
UTC only when an instant goes on the wire.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from medibook.core import config

logger = logging.getLogger(__name__)

BUSINESS_HOURS = (
    '08:00', '09:00', '10:00', '11:00',
    '12:00', '13:00', '14:00', '15:00', '16:00',
)
SLOT_DURATION = timedelta(hours=1)
WIRE_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def operating_zone() -> ZoneInfo:
    return ZoneInfo(config.OPERATING_TIMEZONE)


def parse_slot_label(label: str) -> time:
    if label not in BUSINESS_HOURS:
        raise ValueError(f'{label!r} is not a bookable time slot.')
    hours, minutes = label.split(':')
    return time(int(hours), int(minutes))


def slot_instant(day: date, label: str) -> datetime:
    """Return the UTC instant of ``label`` on ``day`` in the operating timezone."""
    local = datetime.combine(day, parse_slot_label(label), tzinfo=operating_zone())
    return local.astimezone(timezone.utc)


def business_day_start(day: date) -> datetime:
    return slot_instant(day, BUSINESS_HOURS[0])


def format_instant(instant: datetime) -> str:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).strftime(WIRE_FORMAT)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    normalized = value.strip()
    if normalized.endswith(('Z', 'z')):
        normalized = normalized[:-1] + '+00:00'
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def local_date(instant: datetime) -> date:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(operating_zone()).date()


def slot_label_for(instant: datetime) -> str | None:
    """Catalogue label for ``instant`` or None when it is not on a slot boundary."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(operating_zone())
    if local.minute or local.second or local.microsecond:
        return None
    label = local.strftime('%H:%M')
    return label if label in BUSINESS_HOURS else None


def availability_dates(entries: Iterable[str]) -> set[date]:
    dates: set[date] = set()
    for entry in entries:
        try:
            dates.add(local_date(parse_instant(entry)))
        except (TypeError, ValueError):
            logger.warning('Skipping unparseable availability entry %r', entry)
    return dates


def is_day_available(entries: Iterable[str], day: date) -> bool:
    return day in availability_dates(entries)


def is_cancellable(instant: datetime, now: datetime, lead_hours: int | None = None) -> bool:
    lead = timedelta(hours=config.CANCELLATION_LEAD_HOURS if lead_hours is None else lead_hours)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return instant - now >= lead
