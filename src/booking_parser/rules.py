"""
Per-platform extraction rules.

Each platform is described as data: the sender domains that identify it,
fallback detection hints, and for every booking field an ordered tuple of
named rules. The parser tries the rules in order and keeps the first value
found, so adding a platform or a new email layout means adding rules here.
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional, Tuple

from ..utils.models import Platform
from .dates import parse_full_date, parse_month_day, infer_year, infer_check_out

DatePair = Tuple[Optional[date], Optional[date]]


@dataclass(frozen=True)
class EmailText:
    """The searchable text of one email."""
    subject: str
    content: str


@dataclass(frozen=True)
class ExtractionRule:
    """A named pure function from email text to an optional field value."""
    name: str
    extract: Callable[[EmailText], Optional[Any]]

    def apply(self, text: EmailText) -> Optional[Any]:
        return self.extract(text)


@dataclass(frozen=True)
class DateRule:
    """A named rule yielding a (check-in, check-out) pair.

    Rules receive today's date for year inference and the check-in found so
    far, so a bare check-out can borrow its year.
    """
    name: str
    extract: Callable[[EmailText, date, Optional[date]], DatePair]

    def apply(self, text: EmailText, today: date, check_in: Optional[date]) -> DatePair:
        return self.extract(text, today, check_in)


@dataclass(frozen=True)
class PlatformRules:
    platform: Platform
    sender_domains: Tuple[str, ...]
    detection: Tuple[ExtractionRule, ...]
    reference: Tuple[ExtractionRule, ...]
    property_id: Tuple[ExtractionRule, ...]
    dates: Tuple[DateRule, ...]
    guest_name: Tuple[ExtractionRule, ...]
    guest_count: Tuple[ExtractionRule, ...]
    required_fields: Tuple[str, ...] = ("booking_reference", "property_id")


def first_match(rules: Tuple[ExtractionRule, ...], text: EmailText) -> Tuple[Optional[str], Optional[Any]]:
    """Return (rule name, value) of the first rule producing a value."""
    for rule in rules:
        value = rule.apply(text)
        if value is not None and value != "":
            return rule.name, value
    return None, None


def _source(text: EmailText, source: str) -> str:
    return text.subject if source == "subject" else text.content


def regex_rule(name: str, pattern: str, source: str = "content",
               transform: Optional[Callable[[str], Any]] = None, flags: int = 0) -> ExtractionRule:
    """Rule returning capture group 1 of the first match."""
    compiled = re.compile(pattern, flags)

    def extract(text: EmailText) -> Optional[Any]:
        match = compiled.search(_source(text, source))
        if not match:
            return None
        value = match.group(1).strip()
        if not value:
            return None
        return transform(value) if transform else value

    return ExtractionRule(name, extract)


def contains_rule(name: str, needle: str, source: str = "content") -> ExtractionRule:
    """Detection hint: case-insensitive substring test."""
    lowered = needle.lower()

    def extract(text: EmailText) -> Optional[bool]:
        return True if lowered in _source(text, source).lower() else None

    return ExtractionRule(name, extract)


# Date rules

CHECK_IN_LABEL = r'(?i:check[\s-]*in)'
CHECK_OUT_LABEL = r'(?i:check[\s-]*out)'
NUMERIC_DATE = r'(\d{1,2}/\d{1,2}/\d{4})'
WEEKDAY = r'(?:(?i:mon|tue|wed|thu|fri|sat|sun)[a-z]*\.?,?\s+)?'
MONTH_DAY_YEAR = r'([A-Z][a-z]{2,8}\.?\s+\d{1,2},?\s+\d{4})'
DAY_MONTH_YEAR = r'(\d{1,2}\s+[A-Z][a-z]{2,8}\s+\d{4})'
MONTH_DAY_OPTIONAL_YEAR = r'([A-Z][a-z]{2,8}\.?\s+\d{1,2})\b(?:,?\s+(\d{4})\b)?'


def labeled_dates_rule(name: str, check_in_label: str, check_out_label: str, date_pattern: str) -> DateRule:
    """Check-in and check-out each announced by their own label."""
    check_in_re = re.compile(check_in_label + r'[:\s>]+' + WEEKDAY + date_pattern)
    check_out_re = re.compile(check_out_label + r'[:\s>]+' + WEEKDAY + date_pattern)

    def extract(text: EmailText, today: date, check_in: Optional[date]) -> DatePair:
        found_in = check_in_re.search(text.content)
        found_out = check_out_re.search(text.content)
        return (
            parse_full_date(found_in.group(1)) if found_in else None,
            parse_full_date(found_out.group(1)) if found_out else None,
        )

    return DateRule(name, extract)


def range_rule(name: str, prefix: str = "", source: str = "content") -> DateRule:
    """Combined ``Jan 20, 2026 - Jan 23, 2026`` range, optionally after a label."""
    compiled = re.compile(prefix + MONTH_DAY_YEAR + r'\s*[-–—]+\s*' + MONTH_DAY_YEAR)

    def extract(text: EmailText, today: date, check_in: Optional[date]) -> DatePair:
        match = compiled.search(_source(text, source))
        if not match:
            return None, None
        return parse_full_date(match.group(1)), parse_full_date(match.group(2))

    return DateRule(name, extract)


def bare_dates_rule(name: str, check_in_label: str = CHECK_IN_LABEL,
                    check_out_label: str = CHECK_OUT_LABEL) -> DateRule:
    """``Check-in Wed, Dec 3`` style dates whose year may be missing."""
    check_in_re = re.compile(check_in_label + r'[:\s>]+' + WEEKDAY + MONTH_DAY_OPTIONAL_YEAR)
    check_out_re = re.compile(check_out_label + r'[:\s>]+' + WEEKDAY + MONTH_DAY_OPTIONAL_YEAR)

    def resolve(match, today: date, anchor: Optional[date], is_check_out: bool) -> Optional[date]:
        if not match:
            return None
        if match.group(2):
            return parse_full_date(f"{match.group(1)} {match.group(2)}")
        month_day = parse_month_day(match.group(1))
        if month_day is None:
            return None
        if is_check_out:
            return infer_check_out(month_day[0], month_day[1], anchor, today)
        return infer_year(month_day[0], month_day[1], today)

    def extract(text: EmailText, today: date, check_in: Optional[date]) -> DatePair:
        resolved_in = resolve(check_in_re.search(text.content), today, None, False)
        anchor = check_in or resolved_in
        resolved_out = resolve(check_out_re.search(text.content), today, anchor, True)
        return resolved_in, resolved_out

    return DateRule(name, extract)


# Shared field rules

NAME_PAIR = r'([A-Z][a-z]+[ \t]+[A-Z][a-z]+)\b'

_ADULTS = re.compile(r'\b(\d+)\s+adults?\b', re.IGNORECASE)
_CHILDREN = re.compile(r'\b(\d+)\s+(?:children|child|kids?)\b', re.IGNORECASE)
_GUESTS = re.compile(r'\b(\d+)\s+guests?\b', re.IGNORECASE)
_GUESTS_LABEL = re.compile(r'(?i:guests|number\s+of\s+guests)[:\s>]+(\d+)\b(?!\s*(?i:adults?|child))')


def _adults_plus_children(text: EmailText) -> Optional[int]:
    adults = _ADULTS.search(text.content)
    if not adults:
        return None
    children = _CHILDREN.search(text.content)
    return int(adults.group(1)) + (int(children.group(1)) if children else 0)


def _generic_guests(text: EmailText) -> Optional[int]:
    match = _GUESTS.search(text.content) or _GUESTS_LABEL.search(text.content)
    return int(match.group(1)) if match else None


GUEST_COUNT_RULES = (
    ExtractionRule("adults_plus_children", _adults_plus_children),
    ExtractionRule("generic_guests", _generic_guests),
)

# Words that mark a line as email chrome rather than a listing title
BOILERPLATE_WORDS = (
    "CHECK", "RESERVATION", "CONFIRMED", "INSTANT BOOK", "VIEW", "HELP",
    "UNSUBSCRIBE", "PRIVACY", "TERMS", "ITINERARY", "MESSAGE", "RECEIPT",
    "AIRBNB", "GET THE APP", "CANCELLATION", "SUPPORT",
)
_NAME_LINE = re.compile(r"^[A-Z][A-Za-z0-9\s\-,&']+[A-Za-z]$")


def _is_title_or_upper(line: str) -> bool:
    if line.isupper():
        return True
    words = [w for w in re.split(r"[\s\-,&]+", line) if w]
    return all(w[0].isupper() or w[0].isdigit() or len(w) <= 3 for w in words)


def _property_name_line(text: EmailText) -> Optional[str]:
    for raw_line in text.content.splitlines():
        line = raw_line.strip()
        if len(line) < 10 or not _NAME_LINE.match(line):
            continue
        upper = line.upper()
        if any(word in upper for word in BOILERPLATE_WORDS):
            continue
        if _is_title_or_upper(line):
            return line
    return None


# Platform rule sets

AIRBNB_RULES = PlatformRules(
    platform=Platform.AIRBNB,
    sender_domains=("airbnb.com",),
    detection=(
        contains_rule("subject_reservation_confirmed", "reservation confirmed", source="subject"),
        contains_rule("mentions_airbnb_domain", "airbnb.com"),
        regex_rule("hm_confirmation_code", r'(?i:confirmation\s*code)[:\s]+(HM[A-Z0-9]+)'),
    ),
    reference=(
        regex_rule(
            "labeled_code",
            r'(?i:confirmation|reservation)\s*(?i:code|number)?[:\s>]+(?=[A-Z0-9]*\d)([A-Z0-9]{8,12})\b',
        ),
    ),
    property_id=(
        regex_rule("listing_number", r'\b(?i:listing|rooms?)[/:\s#]+(\d+)'),
        ExtractionRule("property_name_line", _property_name_line),
    ),
    dates=(
        labeled_dates_rule("numeric_check_in_out", CHECK_IN_LABEL, CHECK_OUT_LABEL, NUMERIC_DATE),
        range_rule("dates_label_range", prefix=r'(?i:dates)[:\s>]+'),
        bare_dates_rule("month_day_check_in_out"),
    ),
    guest_name=(
        regex_rule("subject_arrives", NAME_PAIR + r'\s+(?i:arrives)', source="subject"),
        regex_rule("labeled_guest", r'\b(?i:guest|reserved\s+by|send\s+\w+\s+a\s+message)[:\s>]+' + NAME_PAIR),
    ),
    guest_count=GUEST_COUNT_RULES,
    required_fields=("booking_reference", "property_id", "check_in_date"),
)

VRBO_RULES = PlatformRules(
    platform=Platform.VRBO,
    sender_domains=("vrbo.com", "homeaway.com"),
    detection=(
        contains_rule("subject_instant_booking", "instant booking from", source="subject"),
        contains_rule("mentions_vrbo_domain", "vrbo.com"),
        contains_rule("mentions_homeaway", "homeaway"),
        regex_rule("confirmation_number", r'(?i:confirmation\s*number)[:\s]+((?:HA-)?[A-Z0-9]+)'),
    ),
    reference=(
        regex_rule(
            "reservation_id_or_confirmation_number",
            r'(?i:reservation\s+id|confirmation\s+number)[:\s>#]+([A-Z]{2}-[A-Z0-9]{6,}|\d{8,})',
        ),
    ),
    property_id=(
        regex_rule("unit_code", r'(?i:unit)[:\s>#]+(unit_\d+)'),
        regex_rule("property_number", r'\b(?i:property(?:\s+id)?)[:\s>#]+(\d+)'),
        regex_rule("subject_listing_number", r'(?i:vrbo)\s+#(\d+)', source="subject"),
    ),
    dates=(
        labeled_dates_rule("numeric_check_in_out", CHECK_IN_LABEL, CHECK_OUT_LABEL, NUMERIC_DATE),
        range_rule("subject_range", source="subject"),
        range_rule("dates_label_range", prefix=r'(?i:dates)[:\s>]+'),
        labeled_dates_rule("arrival_departure", r'(?i:arrival)', r'(?i:departure)', MONTH_DAY_YEAR),
        bare_dates_rule("month_day_check_in_out"),
    ),
    guest_name=(
        regex_rule("subject_booking_from", r'(?i:instant\s+booking\s+from|from)\s+' + NAME_PAIR + r':', source="subject"),
        regex_rule("traveler_name", r'(?i:traveler\s+name|guest\s+name)[:\s>]+' + NAME_PAIR),
    ),
    guest_count=GUEST_COUNT_RULES,
)

BOOKING_COM_RULES = PlatformRules(
    platform=Platform.BOOKING,
    sender_domains=("booking.com",),
    detection=(
        contains_rule("mentions_booking_domain", "booking.com"),
    ),
    reference=(
        regex_rule("booking_number", r'(?i:booking|reservation)\s*(?i:number|id)[:\s#]+(\d+)'),
        regex_rule("confirmation_number", r'(?i:confirmation\s*number)[:\s#]+(\d{6,})'),
    ),
    property_id=(
        regex_rule("property_number", r'\b(?i:property(?:\s+id)?|hotel\s+id)[:\s#]+(\d+)'),
    ),
    dates=(
        labeled_dates_rule("numeric_check_in_out", CHECK_IN_LABEL, CHECK_OUT_LABEL, NUMERIC_DATE),
        labeled_dates_rule("day_month_year_check_in_out", CHECK_IN_LABEL, CHECK_OUT_LABEL, DAY_MONTH_YEAR),
        bare_dates_rule("month_day_check_in_out"),
    ),
    guest_name=(
        regex_rule("guest_name_label", r'(?i:guest\s+name)[:\s]+' + NAME_PAIR),
        regex_rule("booker_label", r'(?i:booker|booked\s+by)[:\s]+' + NAME_PAIR),
    ),
    guest_count=GUEST_COUNT_RULES,
)

# Detection falls back through platforms in this order
DEFAULT_RULES: Tuple[PlatformRules, ...] = (AIRBNB_RULES, VRBO_RULES, BOOKING_COM_RULES)

# Content gating
CONFIRMATION_KEYWORDS = ("reservation", "booking", "confirmed", "confirmation")
BOOKING_MARKERS = (
    re.compile(r'check[\s-]*in\b', re.IGNORECASE),
    re.compile(r'\barrival\b', re.IGNORECASE),
    re.compile(
        r'(?:confirmation|reservation|booking)\s*(?:code|number|id)[:\s#>]+[A-Z0-9]',
        re.IGNORECASE,
    ),
)


def rules_by_platform(rule_sets: Tuple[PlatformRules, ...] = DEFAULT_RULES) -> Dict[Platform, PlatformRules]:
    return {rules.platform: rules for rules in rule_sets}
