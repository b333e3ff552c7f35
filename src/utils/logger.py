"""
Logging utility for the Rental Turnover Automation system.
"""
import logging
import sys
from typing import Optional
from colorama import Fore, Style, init
import structlog

from .models import ProcessingStats

# Initialize colorama for cross-platform colored output
init(autoreset=True)


class ColorizedFormatter(logging.Formatter):
    """Custom formatter with colorized output."""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{Style.RESET_ALL}"
        return super().format(record)


def setup_logger(
    name: str = "turnover_automation",
    level: str = "INFO",
    log_file: Optional[str] = None
) -> structlog.BoundLogger:
    """
    Set up structured logging with colorized console output.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging to file

    Returns:
        Configured structured logger
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_file else structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger(name)

    # Handlers go on the root logger so every module logger shares them
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in list(root_logger.handlers):
        if getattr(handler, "_turnover_handler", False):
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColorizedFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    console_handler._turnover_handler = True
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        file_handler._turnover_handler = True
        root_logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "turnover_automation") -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


class IntakeLogger:
    """Specialized logger for intake runs with summary tracking."""

    def __init__(self, logger: structlog.BoundLogger):
        self.logger = logger
        self.stats = ProcessingStats()

    def log_email_processed(self, platform: str, email_id: str):
        """Log when an email is processed."""
        self.stats.emails_processed += 1
        self.stats.add_platform_count(platform)
        self.logger.info("Email processed", platform=platform, email_id=email_id)

    def log_booking_parsed(self, booking):
        """Log when a booking is successfully parsed."""
        self.stats.bookings_parsed += 1
        self.logger.info(
            "Booking parsed successfully",
            reference=booking.booking_reference,
            platform=booking.platform.value,
            property_id=booking.property_id,
        )

    def log_skipped(self, email_id: str, reason: str):
        """Log an email that was not a usable booking."""
        self.logger.info("Email skipped", email_id=email_id, reason=reason)

    def log_unchanged(self, booking):
        """Log a booking identical to what is already stored."""
        self.stats.unchanged += 1
        self.logger.info(
            "Booking unchanged, skipping",
            reference=booking.booking_reference,
            platform=booking.platform.value,
        )

    def log_new_or_changed(self, booking):
        self.stats.new_or_changed += 1
        self.logger.info(
            "New or changed booking detected",
            reference=booking.booking_reference,
            platform=booking.platform.value,
        )

    def log_workflow_started(self, booking, execution_id: str):
        self.stats.workflows_started += 1
        self.logger.info(
            "Cleaner coordination started",
            reference=booking.booking_reference,
            execution_id=execution_id,
        )

    def log_error(self, error: Exception, context: str = ""):
        """Log an error."""
        self.stats.errors += 1
        self.logger.error(
            "Error occurred",
            error=str(error),
            error_type=type(error).__name__,
            context=context
        )

    def print_summary(self):
        """Print a summary of all operations."""
        self.logger.info(
            "Processing summary",
            emails_processed=self.stats.emails_processed,
            bookings_parsed=self.stats.bookings_parsed,
            new_or_changed=self.stats.new_or_changed,
            unchanged=self.stats.unchanged,
            workflows_started=self.stats.workflows_started,
            errors=self.stats.errors,
            platforms=self.stats.platforms
        )

        print(f"\n{Fore.CYAN}{'='*50}")
        print(f"{Fore.WHITE}INTAKE SUMMARY")
        print(f"{Fore.CYAN}{'='*50}")
        print(f"{Fore.GREEN}✓ Emails processed: {self.stats.emails_processed}")
        print(f"{Fore.GREEN}✓ Bookings parsed: {self.stats.bookings_parsed}")
        print(f"{Fore.BLUE}✓ New or changed: {self.stats.new_or_changed}")
        print(f"{Fore.YELLOW}⚠ Unchanged: {self.stats.unchanged}")
        print(f"{Fore.BLUE}✓ Workflows started: {self.stats.workflows_started}")
        print(f"{Fore.RED}✗ Errors: {self.stats.errors}")

        if self.stats.platforms:
            print(f"\n{Fore.WHITE}By Platform:")
            for platform, count in self.stats.platforms.items():
                print(f"  {Fore.CYAN}{platform}: {count}")

        print(f"{Fore.CYAN}{'='*50}\n")

    def reset_stats(self):
        """Reset statistics."""
        self.stats.reset()
