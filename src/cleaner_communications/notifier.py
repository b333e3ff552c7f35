# cleaner_communications/notifier.py
from html import escape
from typing import Optional
from zoneinfo import ZoneInfo

from .email_client import CalendarAttachment, EmailClient
from .sms_client import SMSClient
from ..calendar_integration.ics import build_cleaning_invite, parse_cleaning_duration
from ..utils.logger import get_logger
from ..utils.models import CleanerContact, WorkflowExecution
from config.settings import WorkflowConfig


class CleanerNotifier:
    """Sends cleaner requests, calendar invites and owner alerts.

    Every method returns True when at least one channel delivered, False
    otherwise; retry policy belongs to the caller.
    """

    def __init__(self, email_client: EmailClient, workflow_config: WorkflowConfig,
                 sms_client: Optional[SMSClient] = None):
        self.email = email_client
        self.sms = sms_client
        self.config = workflow_config
        self.logger = get_logger("notifier")

    def _local_time(self, execution: WorkflowExecution) -> str:
        tz_name = execution.property.metadata.timezone or self.config.default_timezone
        local = execution.scheduled_cleaning_at.astimezone(ZoneInfo(tz_name))
        return local.strftime("%A, %B %d, %Y at %I:%M %p %Z")

    def notify_cleaner(self, execution: WorkflowExecution, cleaner: CleanerContact, token: str) -> bool:
        """Ask a cleaner to take the turnover, with yes/no links carrying the token."""
        prop = execution.property
        booking = execution.booking
        yes_url = self.config.callback_url(token, "yes")
        no_url = self.config.callback_url(token, "no")
        when = self._local_time(execution)
        duration = parse_cleaning_duration(prop.metadata.cleaning_duration)

        subject = f"Cleaning Request - {prop.display_name} on {booking.check_out_date}"
        body = (
            f"Hi {cleaner.name},\n\n"
            f"A guest checks out of {prop.display_name} and a cleaning is needed.\n\n"
            f"Address: {prop.address}\n"
            f"When: {when}\n"
            f"Estimated duration: {duration:g} hours\n"
            f"Guests: {booking.number_of_guests}\n"
            f"Bedrooms: {prop.metadata.bedrooms}, Bathrooms: {prop.metadata.bathrooms}\n\n"
            f"Can you take it?\n"
            f"  Yes: {yes_url}\n"
            f"  No:  {no_url}\n\n"
            f"Thank you,\n{prop.metadata.owner_name}"
        )
        html = (
            f"<p>Hi {escape(cleaner.name)},</p>"
            f"<p>A guest checks out of <strong>{escape(prop.display_name)}</strong> and a cleaning is needed.</p>"
            f"<p>Address: {escape(prop.address or '')}<br/>When: {escape(when)}<br/>"
            f"Estimated duration: {duration:g} hours<br/>Guests: {booking.number_of_guests}</p>"
            f'<p><a href="{escape(yes_url)}">Yes, I can clean</a> &nbsp; '
            f'<a href="{escape(no_url)}">No, I am not available</a></p>'
            f"<p>Thank you,<br/>{escape(prop.metadata.owner_name or '')}</p>"
        )
        sms_body = (
            f"Cleaning needed at {prop.display_name} {when}. "
            f"Reply via link - YES: {yes_url} NO: {no_url}"
        )

        self.logger.info("Starting cleaner notification",
                         execution_id=execution.execution_id,
                         cleaner_name=cleaner.name,
                         has_email=bool(cleaner.email),
                         has_phone=bool(cleaner.phone))

        email_success = False
        if cleaner.email:
            try:
                self.email.send(to=cleaner.email, subject=subject, body=body, html=html)
                email_success = True
            except Exception as e:
                self.logger.error("Email failed", cleaner_name=cleaner.name,
                                  email=cleaner.email, error=str(e),
                                  smtp_server=self.email.smtp_server)

        sms_success = False
        if cleaner.phone and self.sms is not None:
            try:
                self.sms.send(to=cleaner.phone, body=sms_body)
                sms_success = True
            except Exception as e:
                self.logger.error("SMS failed", cleaner_name=cleaner.name,
                                  phone=cleaner.phone, error=str(e))

        if email_success or sms_success:
            self.logger.info("Cleaner notification sent",
                             execution_id=execution.execution_id,
                             cleaner_name=cleaner.name,
                             email_success=email_success,
                             sms_success=sms_success)
            return True

        self.logger.error("Failed to send any notifications",
                          execution_id=execution.execution_id,
                          cleaner_name=cleaner.name)
        return False

    def send_calendar_invite(self, execution: WorkflowExecution, cleaner: CleanerContact) -> bool:
        """Email the confirmed cleaner an ICS invite, copying the owner."""
        if not cleaner.email:
            self.logger.warning("Cleaner has no email, cannot send invite", cleaner_name=cleaner.name)
            return False

        prop = execution.property
        ics = build_cleaning_invite(
            booking=execution.booking,
            prop=prop,
            cleaner=cleaner,
            start_at=execution.scheduled_cleaning_at,
            owner_email=execution.owner_email or None,
            uid=f"{execution.execution_id}@turnover",
        )
        cleaning_date = execution.scheduled_cleaning_at.date().isoformat()
        subject = f"Cleaning Scheduled - {prop.display_name} on {cleaning_date}"
        body = (
            f"Hi {cleaner.name},\n\n"
            f"Thanks for confirming. You are scheduled to clean {prop.display_name} "
            f"on {self._local_time(execution)}.\n\n"
            f"Address: {prop.address}\n"
        )
        if prop.metadata.access_instructions:
            body += f"Access: {prop.metadata.access_instructions}\n"
        if prop.metadata.special_instructions:
            body += f"Special instructions: {prop.metadata.special_instructions}\n"
        body += "\nThe attached calendar invite has all the details."

        cc = [execution.owner_email] if execution.owner_email else []
        try:
            self.email.send(
                to=cleaner.email,
                subject=subject,
                body=body,
                cc=cc,
                calendar=CalendarAttachment(f"cleaning-{cleaning_date}.ics", ics),
            )
        except Exception as e:
            self.logger.error("Calendar invite failed", execution_id=execution.execution_id,
                              cleaner_name=cleaner.name, error=str(e))
            return False

        self.logger.info("Calendar invite sent", execution_id=execution.execution_id,
                         cleaner_name=cleaner.name, owner_copied=bool(cc))
        return True

    def notify_owner_exhausted(self, execution: WorkflowExecution) -> bool:
        """Tell the owner nobody accepted, listing who was asked."""
        if not execution.owner_email:
            self.logger.error("No owner email configured", execution_id=execution.execution_id)
            return False

        prop = execution.property
        booking = execution.booking
        contacted = execution.contacted_cleaners
        cleaner_lines = "\n".join(f"  - {name}" for name in contacted) or "  (no cleaners configured)"
        subject = f"ACTION NEEDED: No cleaner for {prop.display_name} on {booking.check_out_date}"
        body = (
            f"Hi {prop.metadata.owner_name},\n\n"
            f"No cleaner accepted the turnover at {prop.display_name} "
            f"({self._local_time(execution)}).\n\n"
            f"Booking: {booking.platform.value} {booking.booking_reference}\n"
            f"Guest: {booking.guest_name or 'unknown'}\n"
            f"Check-in: {booking.check_in_date}  Check-out: {booking.check_out_date}\n\n"
            f"Cleaners contacted:\n{cleaner_lines}\n\n"
            f"Please arrange a cleaning manually."
        )
        try:
            self.email.send(to=execution.owner_email, subject=subject, body=body)
        except Exception as e:
            self.logger.error("Owner notification failed", execution_id=execution.execution_id,
                              error=str(e))
            return False

        self.logger.info("Owner notified of exhausted cleaners",
                         execution_id=execution.execution_id, contacted=contacted)
        return True
