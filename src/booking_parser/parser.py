"""
Booking parser for extracting structured data from vacation rental confirmation emails.
"""
import hashlib
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from bs4 import BeautifulSoup

from ..utils.models import EmailData, Booking, Platform, ProcessingResult
from ..utils.logger import get_logger
from .rules import (
    BOOKING_MARKERS, CONFIRMATION_KEYWORDS, DEFAULT_RULES, EmailText,
    PlatformRules, first_match, rules_by_platform
)


class BookingParser:
    """Parser for extracting booking information from vacation rental emails."""

    def __init__(
        self,
        rule_sets: Iterable[PlatformRules] = DEFAULT_RULES,
        sender_domains: Optional[Dict[Platform, Iterable[str]]] = None,
        clock: Callable[[], date] = date.today,
    ):
        self.logger = get_logger("booking_parser")
        self.rule_sets: Tuple[PlatformRules, ...] = tuple(rule_sets)
        self.rules = rules_by_platform(self.rule_sets)
        overrides = sender_domains or {}
        self.sender_domains = {
            rules.platform: tuple(d.lower() for d in overrides.get(rules.platform, rules.sender_domains))
            for rules in self.rule_sets
        }
        self.clock = clock

    def parse(self, email_data: EmailData) -> Optional[Booking]:
        """Return the Booking in an email, or None when it is not a usable booking."""
        result = self.parse_email(email_data)
        return result.booking_data if result.success else None

    def parse_email(self, email_data: EmailData) -> ProcessingResult:
        """
        Parse email and extract booking information.

        Args:
            email_data: Email data to parse

        Returns:
            ProcessingResult with the Booking, or the reason it is not one
        """
        platform = None
        try:
            text = self.email_text(email_data)

            platform = self.detect_platform(email_data.sender, text)
            if platform is None:
                return self._not_a_booking(email_data, "Could not determine platform")

            if not self.passes_content_gate(text):
                return self._not_a_booking(email_data, "Not a booking confirmation", platform)

            booking, missing = self._extract_booking(email_data, text, self.rules[platform])
            if missing:
                return self._not_a_booking(
                    email_data, f"Missing required field: {', '.join(missing)}", platform
                )

            self.logger.info("Successfully parsed booking",
                             reference=booking.booking_reference,
                             platform=platform.value,
                             property_id=booking.property_id)

            return ProcessingResult(
                success=True,
                booking_data=booking,
                email_id=email_data.email_id,
                platform=platform
            )

        except Exception as e:
            self.logger.error("Error parsing email",
                              email_id=email_data.email_id,
                              error=str(e))
            return ProcessingResult(
                success=False,
                error_message=str(e),
                email_id=email_data.email_id,
                platform=platform
            )

    def email_text(self, email_data: EmailData) -> EmailText:
        """Plain-text body plus a text rendering of the HTML body."""
        parts = [email_data.body_text or ""]
        if email_data.body_html:
            soup = BeautifulSoup(email_data.body_html, 'html.parser')
            parts.append(soup.get_text("\n"))
        return EmailText(subject=email_data.subject or "", content="\n".join(parts))

    def detect_platform(self, sender: str, text: EmailText) -> Optional[Platform]:
        """Sender domain first, then per-platform subject/body hints."""
        sender_lower = (sender or "").lower()
        for rules in self.rule_sets:
            if any(domain in sender_lower for domain in self.sender_domains[rules.platform]):
                return rules.platform

        for rules in self.rule_sets:
            hint, _ = first_match(rules.detection, text)
            if hint:
                self.logger.debug("Platform detected from content", platform=rules.platform.value, hint=hint)
                return rules.platform

        return None

    def passes_content_gate(self, text: EmailText) -> bool:
        """Require a confirmation keyword and a booking-specific marker."""
        haystack = f"{text.subject}\n{text.content}".lower()
        if not any(keyword in haystack for keyword in CONFIRMATION_KEYWORDS):
            return False
        return any(marker.search(text.content) for marker in BOOKING_MARKERS)

    def _extract_booking(self, email_data: EmailData, text: EmailText,
                         rules: PlatformRules) -> Tuple[Optional[Booking], List[str]]:
        _, reference = first_match(rules.reference, text)
        property_rule, property_id = first_match(rules.property_id, text)
        _, guest_name = first_match(rules.guest_name, text)
        _, guest_count = first_match(rules.guest_count, text)
        check_in, check_out = self._extract_dates(text, rules, self.reference_date(email_data))

        fields = {
            'booking_reference': reference or "",
            'property_id': property_id or "",
            'check_in_date': check_in,
            'check_out_date': check_out,
        }
        missing = [name for name in rules.required_fields if not fields.get(name)]
        if missing:
            return None, missing

        self.logger.debug("Extracted booking fields", platform=rules.platform.value,
                          property_rule=property_rule, check_in=check_in, check_out=check_out)

        booking = Booking(
            platform=rules.platform,
            booking_reference=fields['booking_reference'],
            property_id=fields['property_id'],
            check_in_date=check_in,
            check_out_date=check_out,
            guest_name=guest_name or "",
            number_of_guests=guest_count or 0,
            raw_source_digest=hashlib.sha256(text.content.encode("utf-8")).hexdigest(),
            email_id=email_data.email_id,
        )
        return booking, []

    def reference_date(self, email_data: EmailData) -> date:
        """
        The day a year-less date is read against.

        That is the day the email was sent, so a backlog processed weeks later
        still places "Dec 3" correctly. A Date header later than today is
        clock skew and falls back to today.
        """
        today = self.clock()
        if email_data.date is None:
            return today
        return min(email_data.date.date(), today)

    def _extract_dates(self, text: EmailText, rules: PlatformRules,
                       today: date) -> Tuple[Optional[date], Optional[date]]:
        check_in: Optional[date] = None
        check_out: Optional[date] = None

        for rule in rules.dates:
            found_in, found_out = rule.apply(text, today, check_in)
            check_in = check_in or found_in
            check_out = check_out or found_out
            if check_in and check_out:
                break

        return check_in, check_out

    def _not_a_booking(self, email_data: EmailData, reason: str,
                       platform: Optional[Platform] = None) -> ProcessingResult:
        self.logger.info("Email is not a usable booking",
                         email_id=email_data.email_id,
                         platform=platform.value if platform else None,
                         reason=reason)
        return ProcessingResult(
            success=False,
            error_message=reason,
            email_id=email_data.email_id,
            platform=platform
        )
