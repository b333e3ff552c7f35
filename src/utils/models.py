"""
Data models for the Rental Turnover Automation system.
"""
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum


class Platform(Enum):
    """Supported vacation rental platforms."""
    AIRBNB = "airbnb"
    VRBO = "vrbo"
    BOOKING = "bookingcom"

    @classmethod
    def from_name(cls, name: str) -> "Platform":
        """Resolve a platform from its canonical name or a known alias."""
        key = (name or "").strip().lower()
        aliases = {
            "airbnb": cls.AIRBNB,
            "vrbo": cls.VRBO,
            "homeaway": cls.VRBO,
            "bookingcom": cls.BOOKING,
            "booking.com": cls.BOOKING,
            "booking": cls.BOOKING,
        }
        if key not in aliases:
            raise ValueError(f"Unknown platform: {name}")
        return aliases[key]


def _to_platform(value) -> Optional[Platform]:
    if value is None or isinstance(value, Platform):
        return value
    return Platform.from_name(value)


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EmailData:
    """Email data structure."""
    email_id: str
    subject: str
    sender: str
    date: datetime
    body_text: str
    body_html: str
    platform: Optional[Platform] = None
    folder: str = "INBOX"

    def __post_init__(self):
        self.platform = _to_platform(self.platform)


@dataclass
class Booking:
    """Booking facts extracted from a confirmation email."""
    platform: Platform
    booking_reference: str
    property_id: str = ""
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    guest_name: str = ""
    number_of_guests: int = 0
    raw_source_digest: str = ""
    email_id: Optional[str] = None

    def __post_init__(self):
        self.platform = _to_platform(self.platform)
        self.check_in_date = _parse_date(self.check_in_date)
        self.check_out_date = _parse_date(self.check_out_date)
        if self.number_of_guests is None:
            self.number_of_guests = 0
        if self.number_of_guests < 0:
            raise ValueError("number_of_guests must be non-negative")
        if (self.check_in_date and self.check_out_date
                and self.check_out_date < self.check_in_date):
            raise ValueError(
                f"check-out {self.check_out_date} precedes check-in {self.check_in_date}"
            )

    @property
    def key(self) -> Tuple[str, str]:
        return self.platform.value, self.booking_reference

    def material_fields(self) -> Tuple:
        """Fields whose change means the cleaning must be coordinated again."""
        return (
            self.property_id,
            self.check_in_date,
            self.check_out_date,
            self.number_of_guests,
            self.guest_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert booking to a JSON-serializable dictionary."""
        return {
            'platform': self.platform.value,
            'booking_reference': self.booking_reference,
            'property_id': self.property_id,
            'check_in_date': _iso(self.check_in_date),
            'check_out_date': _iso(self.check_out_date),
            'guest_name': self.guest_name,
            'number_of_guests': self.number_of_guests,
            'raw_source_digest': self.raw_source_digest,
            'email_id': self.email_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Booking':
        """Create Booking from dictionary."""
        return cls(
            platform=data['platform'],
            booking_reference=data['booking_reference'],
            property_id=data.get('property_id') or "",
            check_in_date=data.get('check_in_date'),
            check_out_date=data.get('check_out_date'),
            guest_name=data.get('guest_name') or "",
            number_of_guests=data.get('number_of_guests') or 0,
            raw_source_digest=data.get('raw_source_digest') or "",
            email_id=data.get('email_id'),
        )

    def __str__(self) -> str:
        return (f"Booking(platform='{self.platform.value}', "
                f"reference='{self.booking_reference}', "
                f"property='{self.property_id}', "
                f"check_in='{self.check_in_date}', "
                f"check_out='{self.check_out_date}')")


@dataclass
class CleanerContact:
    """A cleaner that can be asked to take a turnover."""
    name: str
    email: str = ""
    phone: str = ""
    rank: int = 1

    def __post_init__(self):
        if int(self.rank) < 1:
            raise ValueError(f"Cleaner rank must be a positive integer: {self.name}")
        self.rank = int(self.rank)

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'email': self.email, 'phone': self.phone, 'rank': self.rank}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CleanerContact':
        return cls(
            name=data.get('name', ""),
            email=data.get('email') or "",
            phone=data.get('phone') or "",
            rank=data.get('rank', 1),
        )


@dataclass
class PropertyMetadata:
    """Descriptive property details used in cleaner messages and invites."""
    property_name: str = ""
    bedrooms: int = 0
    bathrooms: float = 0
    cleaning_duration: str = ""
    access_instructions: str = ""
    special_instructions: str = ""
    owner_name: str = "Property Management"
    owner_email: Optional[str] = None
    timezone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'property_name': self.property_name,
            'bedrooms': self.bedrooms,
            'bathrooms': self.bathrooms,
            'cleaning_duration': self.cleaning_duration,
            'access_instructions': self.access_instructions,
            'special_instructions': self.special_instructions,
            'owner_name': self.owner_name,
            'owner_email': self.owner_email,
            'timezone': self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PropertyMetadata':
        data = data or {}
        return cls(
            property_name=data.get('property_name') or data.get('propertyName') or "",
            bedrooms=data.get('bedrooms') or 0,
            bathrooms=data.get('bathrooms') or 0,
            cleaning_duration=data.get('cleaning_duration') or data.get('cleaningDuration') or "",
            access_instructions=data.get('access_instructions') or data.get('accessInstructions') or "",
            special_instructions=data.get('special_instructions') or data.get('specialInstructions') or "",
            owner_name=data.get('owner_name') or data.get('ownerName') or "Property Management",
            owner_email=data.get('owner_email') or data.get('ownerEmail'),
            timezone=data.get('timezone'),
        )


@dataclass
class PropertyConfig:
    """A managed property and its ranked cleaners."""
    property_id: str
    platform_ids: Dict[str, str] = field(default_factory=dict)
    address: str = ""
    cleaners: List[CleanerContact] = field(default_factory=list)
    metadata: PropertyMetadata = field(default_factory=PropertyMetadata)

    @property
    def display_name(self) -> str:
        return self.metadata.property_name or self.property_id

    def ranked_cleaners(self) -> List[CleanerContact]:
        """Cleaners by ascending rank; sorted() is stable so ties keep list order."""
        return sorted(self.cleaners, key=lambda cleaner: cleaner.rank)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'property_id': self.property_id,
            'platform_ids': dict(self.platform_ids),
            'address': self.address,
            'cleaners': [c.to_dict() for c in self.cleaners],
            'metadata': self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PropertyConfig':
        return cls(
            property_id=data.get('property_id') or data.get('propertyId') or "",
            platform_ids=dict(data.get('platform_ids') or data.get('platformIds') or {}),
            address=data.get('address') or "",
            cleaners=[CleanerContact.from_dict(c) for c in data.get('cleaners') or []],
            metadata=PropertyMetadata.from_dict(data.get('metadata') or {}),
        )


@dataclass
class EmailFilters:
    """Sender and subject filters handed to the mailbox."""
    booking_platform_from_addresses: List[str] = field(
        default_factory=lambda: ["airbnb.com", "vrbo.com", "booking.com"]
    )
    subject_patterns: List[str] = field(
        default_factory=lambda: ["Reservation confirmed", "Instant Booking from", "booking confirmation"]
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailFilters':
        data = data or {}
        filters = cls()
        senders = data.get('booking_platform_from_addresses') or data.get('bookingPlatformFromAddresses')
        subjects = data.get('subject_patterns') or data.get('subjectPatterns')
        if senders:
            filters.booking_platform_from_addresses = list(senders)
        if subjects:
            filters.subject_patterns = list(subjects)
        return filters


@dataclass
class PropertiesConfiguration:
    """Everything loaded from the properties configuration document."""
    properties: List[PropertyConfig] = field(default_factory=list)
    email_filters: EmailFilters = field(default_factory=EmailFilters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PropertiesConfiguration':
        return cls(
            properties=[PropertyConfig.from_dict(p) for p in data.get('properties') or []],
            email_filters=EmailFilters.from_dict(data.get('email_filters') or data.get('emailFilters') or {}),
        )


class WorkflowStatus(Enum):
    """Coordination workflow states."""
    PENDING = "pending"
    AWAITING_RESPONSE = "awaiting_response"
    CONFIRMED = "confirmed"
    ESCALATED = "escalated"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.CONFIRMED, WorkflowStatus.EXHAUSTED)


@dataclass
class WorkflowExecution:
    """Persisted state of one cleaner coordination run."""
    execution_id: str
    booking: Booking
    property: PropertyConfig
    owner_email: str
    scheduled_cleaning_at: datetime
    cleaner_cursor: int = 0
    attempt_count: int = 0
    status: WorkflowStatus = WorkflowStatus.PENDING
    active_token: Optional[str] = None
    response_deadline: Optional[datetime] = None
    contacted_cleaners: List[str] = field(default_factory=list)
    assigned_cleaner: Optional[CleanerContact] = None
    confirmed_at: Optional[datetime] = None
    assignment_recorded: bool = False
    calendar_invite_sent: bool = False
    owner_notified: bool = False
    superseded_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: Optional[int] = field(default=None, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal or self.superseded_by is not None

    def current_cleaner(self) -> Optional[CleanerContact]:
        cleaners = self.property.ranked_cleaners()
        if self.cleaner_cursor < len(cleaners):
            return cleaners[self.cleaner_cursor]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'execution_id': self.execution_id,
            'booking': self.booking.to_dict(),
            'property': self.property.to_dict(),
            'owner_email': self.owner_email,
            'scheduled_cleaning_at': _iso(self.scheduled_cleaning_at),
            'cleaner_cursor': self.cleaner_cursor,
            'attempt_count': self.attempt_count,
            'status': self.status.value,
            'active_token': self.active_token,
            'response_deadline': _iso(self.response_deadline),
            'contacted_cleaners': list(self.contacted_cleaners),
            'assigned_cleaner': self.assigned_cleaner.to_dict() if self.assigned_cleaner else None,
            'confirmed_at': _iso(self.confirmed_at),
            'assignment_recorded': self.assignment_recorded,
            'calendar_invite_sent': self.calendar_invite_sent,
            'owner_notified': self.owner_notified,
            'superseded_by': self.superseded_by,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], version: Optional[int] = None) -> 'WorkflowExecution':
        assigned = data.get('assigned_cleaner')
        return cls(
            execution_id=data['execution_id'],
            booking=Booking.from_dict(data['booking']),
            property=PropertyConfig.from_dict(data['property']),
            owner_email=data.get('owner_email') or "",
            scheduled_cleaning_at=_parse_datetime(data['scheduled_cleaning_at']),
            cleaner_cursor=data.get('cleaner_cursor', 0),
            attempt_count=data.get('attempt_count', 0),
            status=WorkflowStatus(data.get('status', WorkflowStatus.PENDING.value)),
            active_token=data.get('active_token'),
            response_deadline=_parse_datetime(data.get('response_deadline')),
            contacted_cleaners=list(data.get('contacted_cleaners') or []),
            assigned_cleaner=CleanerContact.from_dict(assigned) if assigned else None,
            confirmed_at=_parse_datetime(data.get('confirmed_at')),
            assignment_recorded=data.get('assignment_recorded', False),
            calendar_invite_sent=data.get('calendar_invite_sent', False),
            owner_notified=data.get('owner_notified', False),
            superseded_by=data.get('superseded_by'),
            created_at=_parse_datetime(data.get('created_at')) or utc_now(),
            updated_at=_parse_datetime(data.get('updated_at')) or utc_now(),
            version=version,
        )


@dataclass
class CleaningAssignment:
    """Cleaner assignment recorded on a booking once confirmed."""
    cleaner_name: str
    cleaner_email: str
    cleaner_phone: str
    confirmed_at: datetime
    scheduled_cleaning_at: datetime
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cleaner_name': self.cleaner_name,
            'cleaner_email': self.cleaner_email,
            'cleaner_phone': self.cleaner_phone,
            'confirmed_at': _iso(self.confirmed_at),
            'scheduled_cleaning_at': _iso(self.scheduled_cleaning_at),
            'execution_id': self.execution_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CleaningAssignment':
        return cls(
            cleaner_name=data.get('cleaner_name') or "",
            cleaner_email=data.get('cleaner_email') or "",
            cleaner_phone=data.get('cleaner_phone') or "",
            confirmed_at=_parse_datetime(data.get('confirmed_at')),
            scheduled_cleaning_at=_parse_datetime(data.get('scheduled_cleaning_at')),
            execution_id=data.get('execution_id'),
        )


@dataclass
class BookingRecord:
    """Persisted layout of one booking key."""
    booking: Booking
    execution_id: Optional[str] = None
    assignment: Optional[CleaningAssignment] = None
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'booking': self.booking.to_dict(),
            'execution_id': self.execution_id,
            'assignment': self.assignment.to_dict() if self.assignment else None,
            'updated_at': _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BookingRecord':
        assignment = data.get('assignment')
        return cls(
            booking=Booking.from_dict(data['booking']),
            execution_id=data.get('execution_id'),
            assignment=CleaningAssignment.from_dict(assignment) if assignment else None,
            updated_at=_parse_datetime(data.get('updated_at')) or utc_now(),
        )


@dataclass
class ProcessingResult:
    """Result of email processing operation."""
    success: bool
    booking_data: Optional[Booking] = None
    error_message: Optional[str] = None
    email_id: Optional[str] = None
    platform: Optional[Platform] = None

    def __post_init__(self):
        self.platform = _to_platform(self.platform)


class CallbackOutcome(Enum):
    """How a cleaner response was applied."""
    CONFIRMED = "confirmed"
    ADVANCED = "advanced"
    EXHAUSTED = "exhausted"
    ALREADY_HANDLED = "already_handled"


@dataclass
class CallbackResult:
    """Result of applying a cleaner's yes/no response."""
    outcome: CallbackOutcome
    execution_id: Optional[str] = None
    status: Optional[WorkflowStatus] = None
    cleaner_name: Optional[str] = None
    message: str = ""

    @property
    def already_handled(self) -> bool:
        return self.outcome == CallbackOutcome.ALREADY_HANDLED


@dataclass
class IntakeReport:
    """Summary of one intake run."""
    request_id: str
    timestamp: datetime = field(default_factory=utc_now)
    success: bool = True
    emails_processed: int = 0
    bookings_processed: int = 0
    workflows_started: int = 0
    skipped: List[Dict[str, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_id': self.request_id,
            'timestamp': self.timestamp.isoformat(),
            'success': self.success,
            'emails_processed': self.emails_processed,
            'bookings_processed': self.bookings_processed,
            'workflows_started': self.workflows_started,
            'skipped': list(self.skipped),
            'errors': list(self.errors),
            'dry_run': self.dry_run,
        }


@dataclass
class ProcessingStats:
    """Statistics for processing operations."""
    emails_processed: int = 0
    bookings_parsed: int = 0
    new_or_changed: int = 0
    unchanged: int = 0
    workflows_started: int = 0
    errors: int = 0
    platforms: Dict[str, int] = field(default_factory=dict)

    def reset(self):
        """Reset all statistics."""
        self.emails_processed = 0
        self.bookings_parsed = 0
        self.new_or_changed = 0
        self.unchanged = 0
        self.workflows_started = 0
        self.errors = 0
        self.platforms.clear()

    def add_platform_count(self, platform: str):
        """Add count for a platform."""
        if platform not in self.platforms:
            self.platforms[platform] = 0
        self.platforms[platform] += 1
