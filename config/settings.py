"""
Configuration settings for the Rental Turnover Automation system.
"""
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass(frozen=True)
class MailboxConfig:
    """IMAP mailbox configuration settings."""
    email: str = ""
    password: str = ""
    imap_server: str = "imap.gmail.com"
    imap_port: int = 993
    folder: str = "INBOX"
    mark_processed_retries: int = 3

    @classmethod
    def from_env(cls) -> "MailboxConfig":
        return cls(
            email=os.getenv("IMAP_EMAIL", ""),
            password=os.getenv("IMAP_PASSWORD", ""),
            imap_server=os.getenv("IMAP_SERVER", "imap.gmail.com"),
            imap_port=_env_int("IMAP_PORT", 993),
            folder=os.getenv("IMAP_FOLDER", "INBOX"),
            mark_processed_retries=_env_int("MARK_PROCESSED_RETRIES", 3),
        )


@dataclass(frozen=True)
class SmtpConfig:
    """Outbound SMTP settings for cleaner and owner emails."""
    server: str = "smtp.gmail.com"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SmtpConfig":
        username = os.getenv("SMTP_USER")
        return cls(
            server=os.getenv("SMTP_SERVER", "smtp.gmail.com"),
            port=_env_int("SMTP_PORT", 587),
            username=username,
            password=os.getenv("SMTP_PASSWORD"),
            from_address=os.getenv("SMTP_FROM") or username,
        )


@dataclass(frozen=True)
class TwilioConfig:
    """Twilio SMS settings. SMS is disabled when credentials are absent."""
    sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.sid and self.auth_token and self.from_number)

    @classmethod
    def from_env(cls) -> "TwilioConfig":
        return cls(
            sid=os.getenv("TWILIO_SID"),
            auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            from_number=os.getenv("TWILIO_PHONE_NUMBER"),
        )


@dataclass(frozen=True)
class SupabaseConfig:
    """Supabase configuration settings."""
    url: str = ""
    anon_key: str = ""
    service_role_key: str = ""
    state_table: str = "turnover_state"

    def get_auth_key(self) -> str:
        """Prefer service role key for server-side operations when available."""
        return self.service_role_key or self.anon_key

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        return cls(
            url=os.getenv("SUPABASE_URL", ""),
            anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            state_table=os.getenv("SUPABASE_STATE_TABLE", "turnover_state"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Where booking state and workflow executions are persisted."""
    backend: str = "file"
    path: str = ".turnover_state"
    booking_key_prefix: str = "bookings/"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            backend=os.getenv("STORAGE_BACKEND", "file").lower(),
            path=os.getenv("STORAGE_PATH", ".turnover_state"),
            booking_key_prefix=os.getenv("BOOKING_KEY_PREFIX", "bookings/"),
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """Cleaner coordination settings."""
    response_timeout_hours: float = 12.0
    dispatch_retry_budget: int = 3
    dispatch_retry_delay_seconds: float = 2.0
    resume_grace_seconds: float = 300.0
    cleaning_time: str = "12:00"
    default_timezone: str = "America/New_York"
    callback_base_url: str = "http://127.0.0.1:8001"
    callback_path: str = "/api/v1/callback"

    def callback_url(self, token: str, response: str) -> str:
        base = self.callback_base_url.rstrip("/")
        return f"{base}{self.callback_path}?token={token}&response={response}"

    @classmethod
    def from_env(cls) -> "WorkflowConfig":
        return cls(
            response_timeout_hours=_env_float("RESPONSE_TIMEOUT_HOURS", 12.0),
            dispatch_retry_budget=_env_int("DISPATCH_RETRY_BUDGET", 3),
            dispatch_retry_delay_seconds=_env_float("DISPATCH_RETRY_DELAY_SECONDS", 2.0),
            resume_grace_seconds=_env_float("RESUME_GRACE_SECONDS", 300.0),
            cleaning_time=os.getenv("CLEANING_TIME", "12:00"),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "America/New_York"),
            callback_base_url=os.getenv("CALLBACK_BASE_URL", "http://127.0.0.1:8001"),
        )


@dataclass(frozen=True)
class AppConfig:
    """Application configuration settings."""
    log_level: str = "INFO"
    owner_email: str = "owner@example.com"
    properties_config: Optional[str] = None
    properties_config_file: Optional[str] = None
    max_emails_per_run: int = 100

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            owner_email=os.getenv("OWNER_EMAIL", "owner@example.com"),
            properties_config=os.getenv("PROPERTIES_CONFIG"),
            properties_config_file=os.getenv("PROPERTIES_CONFIG_FILE", "properties.json"),
            max_emails_per_run=_env_int("MAX_EMAILS_PER_RUN", 100),
        )


@dataclass(frozen=True)
class Settings:
    """Immutable bundle handed to every component at construction."""
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    twilio: TwilioConfig = field(default_factory=TwilioConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    app: AppConfig = field(default_factory=AppConfig)


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load settings from the environment (and an optional .env file).

    Args:
        env_file: Explicit .env path; defaults to python-dotenv discovery

    Returns:
        Frozen Settings instance
    """
    load_dotenv(env_file)
    return Settings(
        mailbox=MailboxConfig.from_env(),
        smtp=SmtpConfig.from_env(),
        twilio=TwilioConfig.from_env(),
        supabase=SupabaseConfig.from_env(),
        storage=StorageConfig.from_env(),
        workflow=WorkflowConfig.from_env(),
        app=AppConfig.from_env(),
    )
