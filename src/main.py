"""
Main orchestrator for the Rental Turnover Automation system.
"""
import json
import uuid
import click
from typing import Optional

from .booking_parser.parser import BookingParser
from .booking_store.blob_store import BlobStore, FileBlobStore, InMemoryBlobStore
from .booking_store.store import BookingStore
from .cleaner_communications.email_client import EmailClient
from .cleaner_communications.notifier import CleanerNotifier
from .cleaner_communications.sms_client import SMSClient
from .coordination.repository import WorkflowRepository
from .coordination.workflow import CoordinationWorkflow
from .email_reader.mailbox_client import MailboxClient
from .properties.loader import load_properties
from .properties.resolver import PropertyResolver
from .utils.errors import ConfigurationError, PropertyNotFoundError
from .utils.models import EmailData, IntakeReport, PropertiesConfiguration
from .utils.logger import setup_logger, IntakeLogger
from config.settings import Settings, StorageConfig, SupabaseConfig, load_settings


def build_blob_store(storage: StorageConfig, supabase: SupabaseConfig) -> BlobStore:
    """Pick the blob backend named by STORAGE_BACKEND."""
    if storage.backend == "memory":
        return InMemoryBlobStore()
    if storage.backend == "file":
        return FileBlobStore(storage.path)
    if storage.backend == "supabase":
        from .booking_store.supabase_store import SupabaseBlobStore
        return SupabaseBlobStore(supabase)
    raise ConfigurationError(f"Unknown storage backend: {storage.backend}")


class TurnoverAutomation:
    """Wires intake, booking state and cleaner coordination together."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        blob_store: Optional[BlobStore] = None,
        mailbox: Optional[MailboxClient] = None,
        notifier: Optional[CleanerNotifier] = None,
        properties: Optional[PropertiesConfiguration] = None,
        parser: Optional[BookingParser] = None,
    ):
        self.settings = settings or load_settings()
        self.logger = setup_logger("turnover_automation", log_level or self.settings.app.log_level, log_file)
        self.intake_logger = IntakeLogger(self.logger)

        self.blob_store = blob_store or build_blob_store(self.settings.storage, self.settings.supabase)
        self.booking_store = BookingStore(self.blob_store, key_prefix=self.settings.storage.booking_key_prefix)
        self.parser = parser or BookingParser()
        self.mailbox = mailbox or MailboxClient(self.settings.mailbox)
        self.notifier = notifier or CleanerNotifier(
            EmailClient(self.settings.smtp),
            self.settings.workflow,
            SMSClient(self.settings.twilio) if self.settings.twilio.enabled else None,
        )
        self.workflow = CoordinationWorkflow(
            WorkflowRepository(self.blob_store),
            self.notifier,
            self.booking_store,
            self.settings.workflow,
            owner_email=self.settings.app.owner_email,
        )
        self._properties = properties

    @property
    def properties(self) -> PropertiesConfiguration:
        if self._properties is None:
            self._properties = load_properties(self.settings.app)
        return self._properties

    def process_emails(
        self,
        since_days: Optional[int] = None,
        limit: Optional[int] = None,
        dry_run: bool = False,
        include_read: bool = False,
    ) -> IntakeReport:
        """
        Scan the mailbox and start cleaner coordination for new or changed bookings.

        Args:
            since_days: Number of days to look back
            limit: Maximum number of emails to process
            dry_run: Parse and compare only; nothing is claimed, started or marked
            include_read: Also consider messages already marked read

        Returns:
            IntakeReport for the run
        """
        report = IntakeReport(request_id=uuid.uuid4().hex, dry_run=dry_run)
        self.intake_logger.reset_stats()
        self.logger.info("Starting email processing",
                         request_id=report.request_id,
                         since_days=since_days,
                         limit=limit,
                         dry_run=dry_run)

        try:
            properties = self.properties
            resolver = PropertyResolver(properties.properties)
            filters = properties.email_filters

            with self.mailbox as mailbox:
                emails = mailbox.fetch_emails(
                    from_addresses=filters.booking_platform_from_addresses,
                    subject_patterns=filters.subject_patterns,
                    unread_only=not include_read,
                    since_days=since_days,
                    limit=limit or self.settings.app.max_emails_per_run,
                )
                self.logger.info("Found emails to process", count=len(emails))

                for email_data in emails:
                    report.emails_processed += 1
                    try:
                        if self._process_email(email_data, resolver, report, dry_run):
                            mailbox.mark_processed(email_data.email_id)
                    except Exception as e:
                        error = f"Error processing email '{email_data.subject}': {e}"
                        report.errors.append(error)
                        self.intake_logger.log_error(e, f"Email processing failed: {email_data.email_id}")

        except Exception as e:
            self.logger.error("Fatal error in email processing", error=str(e),
                              error_type=type(e).__name__)
            report.success = False
            report.errors.append(f"Fatal error: {e}")
            return report

        self.intake_logger.print_summary()
        self.logger.info("Email scan complete",
                         request_id=report.request_id,
                         bookings_processed=report.bookings_processed,
                         workflows_started=report.workflows_started,
                         errors=len(report.errors))
        return report

    def _process_email(self, email_data: EmailData, resolver: PropertyResolver,
                       report: IntakeReport, dry_run: bool) -> bool:
        """Handle one email; True when it may be marked processed."""
        result = self.parser.parse_email(email_data)
        platform_name = result.platform.value if result.platform else "unknown"
        self.intake_logger.log_email_processed(platform_name, email_data.email_id)

        if not result.success or result.booking_data is None:
            reason = result.error_message or "Not a booking confirmation"
            report.skipped.append({'email_id': email_data.email_id, 'reason': reason})
            self.intake_logger.log_skipped(email_data.email_id, reason)
            return False

        booking = result.booking_data
        report.bookings_processed += 1
        self.intake_logger.log_booking_parsed(booking)

        if not self.booking_store.has_changed(booking):
            self.intake_logger.log_unchanged(booking)
            return not dry_run
        self.intake_logger.log_new_or_changed(booking)

        prop = resolver.resolve(booking.platform, booking.property_id)
        if prop is None:
            error = PropertyNotFoundError(booking.platform.value, booking.property_id,
                                          resolver.describe_known())
            self.logger.error(str(error), available_properties=error.known_properties)
            report.errors.append(str(error))
            self.intake_logger.stats.errors += 1
            return False

        if booking.check_out_date is None:
            reason = "Missing check-out date"
            report.skipped.append({'email_id': email_data.email_id, 'reason': reason})
            self.intake_logger.log_skipped(email_data.email_id, reason)
            return False

        if dry_run:
            self.logger.info("Dry run, not starting workflow",
                             reference=booking.booking_reference,
                             property_id=prop.property_id)
            return False

        claim = self.booking_store.claim(booking, uuid.uuid4().hex)
        if claim is None:
            self.logger.info("Booking already claimed, skipping",
                             reference=booking.booking_reference)
            return True

        try:
            execution = self.workflow.start(booking, prop,
                                            execution_id=claim.execution_id,
                                            supersedes=claim.previous_execution_id)
        except Exception:
            # Once the execution exists the claim must stay; the sweep finishes it.
            if self.workflow.get_execution(claim.execution_id) is None:
                self.booking_store.release(claim)
            else:
                self.logger.warning("Workflow start failed after create, keeping claim",
                                    execution_id=claim.execution_id,
                                    reference=booking.booking_reference)
            raise

        report.workflows_started += 1
        self.intake_logger.log_workflow_started(booking, execution.execution_id)
        return True

    def sweep_timeouts(self) -> int:
        """Advance expired cleaner requests; returns how many executions moved."""
        touched = self.workflow.check_timeouts()
        self.logger.info("Sweep finished", executions_touched=len(touched))
        return len(touched)


@click.group()
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              default=None, help='Logging level (defaults to LOG_LEVEL)')
@click.option('--log-file', type=str,
              help='Log file path (optional)')
@click.option('--env-file', type=click.Path(dir_okay=False),
              help='Read settings from this .env file')
@click.pass_context
def cli(ctx, log_level, log_file, env_file):
    """
    Rental Turnover Automation.

    Reads booking confirmations from the mailbox and coordinates cleaners
    for every new or changed stay.
    """
    ctx.ensure_object(dict)
    ctx.obj.update(log_level=log_level, log_file=log_file, env_file=env_file)


def _automation(ctx) -> TurnoverAutomation:
    if 'automation' not in ctx.obj:
        ctx.obj['automation'] = TurnoverAutomation(
            settings=load_settings(ctx.obj.get('env_file')),
            log_level=ctx.obj.get('log_level'),
            log_file=ctx.obj.get('log_file'),
        )
    return ctx.obj['automation']


@cli.command()
@click.option('--since-days', type=int,
              help='Number of days to look back for emails')
@click.option('--limit', type=int,
              help='Maximum number of emails to process')
@click.option('--dry-run', is_flag=True,
              help='Parse and compare without starting workflows or marking emails')
@click.option('--include-read', is_flag=True,
              help='Also consider emails already marked read')
@click.pass_context
def scan(ctx, since_days, limit, dry_run, include_read):
    """Scan the mailbox and start cleaner coordination."""
    try:
        automation = _automation(ctx)
    except Exception as e:
        click.echo(f"Fatal error: {str(e)}")
        ctx.exit(1)

    report = automation.process_emails(since_days=since_days, limit=limit,
                                       dry_run=dry_run, include_read=include_read)

    click.echo("\nProcessing completed:")
    click.echo(f"  Emails processed: {report.emails_processed}")
    click.echo(f"  Bookings processed: {report.bookings_processed}")
    click.echo(f"  Workflows started: {report.workflows_started}")
    click.echo(f"  Skipped emails: {len(report.skipped)}")
    click.echo(f"  Errors: {len(report.errors)}")
    for error in report.errors:
        click.echo(f"    - {error}")

    if dry_run:
        click.echo("\nDRY RUN MODE - no workflows were started and no emails were marked")

    if not report.success:
        ctx.exit(1)


@cli.command()
@click.pass_context
def sweep(ctx):
    """Advance cleaner requests whose response window has passed."""
    try:
        touched = _automation(ctx).sweep_timeouts()
    except Exception as e:
        click.echo(f"Fatal error: {str(e)}")
        ctx.exit(1)
    click.echo(f"Executions advanced: {touched}")


@cli.command('show-execution')
@click.argument('execution_id')
@click.pass_context
def show_execution(ctx, execution_id):
    """Print a workflow execution as JSON."""
    try:
        execution = _automation(ctx).workflow.get_execution(execution_id)
    except Exception as e:
        click.echo(f"Fatal error: {str(e)}")
        ctx.exit(1)
    if execution is None:
        click.echo(f"No execution {execution_id}", err=True)
        ctx.exit(1)
    click.echo(json.dumps(execution.to_dict(), indent=2))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
