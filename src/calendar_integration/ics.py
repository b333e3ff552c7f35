"""
iCalendar invites for scheduled cleanings.
"""
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ..utils.models import Booking, CleanerContact, PropertyConfig

DEFAULT_DURATION_HOURS = 2.0


def cleaning_moment(check_out: date, cleaning_time: str, tz_name: str) -> datetime:
    """
    Checkout date at the fixed local cleaning time, as a UTC instant.

    Args:
        check_out: Checkout calendar date
        cleaning_time: Local wall-clock time, "HH:MM"
        tz_name: IANA time zone of the property

    Returns:
        Timezone-aware datetime in UTC
    """
    hour, minute = (int(part) for part in cleaning_time.split(":", 1))
    local = datetime.combine(check_out, time(hour, minute), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


def parse_cleaning_duration(text: Optional[str]) -> float:
    """Hours from free text: "2-3 hours" -> 2.5, "3 hours" -> 3.0, otherwise 2.0."""
    if not text:
        return DEFAULT_DURATION_HOURS
    numbers = [float(n) for n in re.findall(r'\d+(?:\.\d+)?', text)]
    if len(numbers) >= 2:
        return (numbers[0] + numbers[1]) / 2
    if numbers:
        return numbers[0]
    return DEFAULT_DURATION_HOURS


def format_utc_timestamp(value: datetime) -> str:
    """Format datetime as UTC timestamp for iCalendar (RFC 5545)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y%m%dT%H%M%SZ")


def escape_ical_text(value: str) -> str:
    return (
        (value or "").replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _attendee(name: str, email: str, role: str) -> str:
    return (f"ATTENDEE;CN={escape_ical_text(name)};ROLE={role};"
            f"PARTSTAT=NEEDS-ACTION;RSVP=TRUE:mailto:{email}")


def build_cleaning_invite(
    booking: Booking,
    prop: PropertyConfig,
    cleaner: CleanerContact,
    start_at: datetime,
    owner_email: Optional[str] = None,
    uid: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Build a METHOD:REQUEST invite for a confirmed cleaning.

    The cleaner is a required attendee; the owner, when given, is the
    organizer and an optional attendee.
    """
    duration = parse_cleaning_duration(prop.metadata.cleaning_duration)
    end_at = start_at + timedelta(hours=duration)
    meta = prop.metadata

    description_lines = [
        f"Cleaning for {prop.display_name} after checkout.",
        f"Booking: {booking.platform.value} {booking.booking_reference}",
        f"Guests: {booking.number_of_guests}",
    ]
    if meta.bedrooms or meta.bathrooms:
        description_lines.append(f"Bedrooms: {meta.bedrooms}, Bathrooms: {meta.bathrooms}")
    description_lines.append(f"Estimated duration: {duration:g} hours")
    if meta.access_instructions:
        description_lines.append(f"Access: {meta.access_instructions}")
    if meta.special_instructions:
        description_lines.append(f"Special instructions: {meta.special_instructions}")
    description_lines.append(f"Cleaner: {cleaner.name} ({cleaner.email}, {cleaner.phone})")

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Rental Turnover Automation//Cleaning//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:REQUEST",
        "BEGIN:VEVENT",
        f"UID:{uid or uuid.uuid4()}",
        f"DTSTAMP:{format_utc_timestamp(now or datetime.now(timezone.utc))}",
        f"DTSTART:{format_utc_timestamp(start_at)}",
        f"DTEND:{format_utc_timestamp(end_at)}",
        f"SUMMARY:{escape_ical_text('Cleaning - ' + prop.display_name)}",
        f"DESCRIPTION:{escape_ical_text(chr(10).join(description_lines))}",
        f"LOCATION:{escape_ical_text(prop.address)}",
    ]
    if owner_email:
        lines.append(f"ORGANIZER;CN={escape_ical_text(meta.owner_name)}:mailto:{owner_email}")
    if cleaner.email:
        lines.append(_attendee(cleaner.name, cleaner.email, "REQ-PARTICIPANT"))
    if owner_email:
        lines.append(_attendee(meta.owner_name, owner_email, "OPT-PARTICIPANT"))
    lines += [
        "STATUS:CONFIRMED",
        "SEQUENCE:0",
        "BEGIN:VALARM",
        "TRIGGER:-PT1H",
        "ACTION:DISPLAY",
        "DESCRIPTION:Cleaning reminder",
        "END:VALARM",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"
