"""
IMAP client for reading vacation rental booking emails.
"""
import imaplib
import email
import email.utils
import time
from email.header import decode_header
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from ..utils.errors import ConfigurationError, MailboxError
from ..utils.models import EmailData
from ..utils.logger import get_logger
from config.settings import MailboxConfig


class MailboxClient:
    """IMAP client for reading vacation rental booking emails."""

    def __init__(self, config: MailboxConfig,
                 connection_factory: Callable[[str, int], imaplib.IMAP4] = imaplib.IMAP4_SSL,
                 sleep: Callable[[float], None] = time.sleep):
        self.logger = get_logger("mailbox_client")
        self.config = config
        self.connection_factory = connection_factory
        self.sleep = sleep
        self.connection: Optional[imaplib.IMAP4] = None
        self.connected = False

    def connect(self) -> None:
        """Connect and log in; raises MailboxError when that fails."""
        if not self.config.email or not self.config.password:
            raise ConfigurationError("IMAP_EMAIL and IMAP_PASSWORD must be set")

        self.logger.info(
            "Connecting to IMAP server",
            server=self.config.imap_server,
            port=self.config.imap_port,
        )
        try:
            self.connection = self.connection_factory(self.config.imap_server, self.config.imap_port)
            self.connection.login(self.config.email, self.config.password)
            status, _ = self.connection.select(self.config.folder)
        except (imaplib.IMAP4.error, OSError) as e:
            self.logger.error("Failed to connect to mailbox", error=str(e))
            self.connected = False
            raise MailboxError(f"Could not connect to {self.config.imap_server}: {e}") from e

        if status != "OK":
            raise MailboxError(f"Could not open folder {self.config.folder}")
        self.connected = True
        self.logger.info("Successfully connected to mailbox", folder=self.config.folder)

    def disconnect(self):
        """Log out from the IMAP server."""
        if self.connection and self.connected:
            try:
                self.connection.logout()
                self.logger.info("Disconnected from mailbox")
            except (imaplib.IMAP4.error, OSError) as e:
                self.logger.error("Error disconnecting from mailbox", error=str(e))
            finally:
                self.connected = False

    def _build_or_chain(self, terms: List[List[str]]) -> List[str]:
        """
        Build nested OR query for IMAP.
        Example: [["FROM", "airbnb.com"], ["FROM", "vrbo.com"], ["FROM", "booking.com"]]
        => ["OR", "FROM", "airbnb.com", "OR", "FROM", "vrbo.com", "FROM", "booking.com"]
        """
        if not terms:
            return []

        if len(terms) == 1:
            return terms[0]

        return ["OR"] + terms[0] + self._build_or_chain(terms[1:])

    def build_criteria(self, from_addresses: Sequence[str], unread_only: bool = True,
                       since_days: Optional[int] = None) -> List[str]:
        criteria = ["UNSEEN"] if unread_only else ["ALL"]

        if since_days:
            since_date = datetime.now() - timedelta(days=since_days)
            criteria += ["SINCE", since_date.strftime("%d-%b-%Y")]

        criteria += self._build_or_chain([["FROM", f'"{address}"'] for address in from_addresses])
        return criteria

    def search_emails(self, from_addresses: Sequence[str], unread_only: bool = True,
                      since_days: Optional[int] = None, limit: Optional[int] = None) -> List[str]:
        """Search for message ids from the booking platforms."""
        if not self.connected:
            raise MailboxError("Not connected to mailbox")

        criteria = self.build_criteria(from_addresses, unread_only, since_days)
        self.logger.info("Searching emails", criteria=criteria)
        try:
            status, email_ids = self.connection.search(None, *criteria)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"Mailbox search failed: {e}") from e

        if status != "OK":
            raise MailboxError(f"Mailbox search failed with status {status}")

        email_id_list = email_ids[0].split()
        if limit:
            email_id_list = email_id_list[:limit]

        self.logger.info("Found emails", count=len(email_id_list))
        return [eid.decode() for eid in email_id_list]

    def fetch_email(self, email_id: str) -> Optional[EmailData]:
        """Fetch and parse a single email; None when the server refuses it."""
        try:
            status, msg_data = self.connection.fetch(email_id, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            self.logger.error("Error fetching email", email_id=email_id, error=str(e))
            return None
        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            self.logger.error("Failed to fetch email", email_id=email_id, status=status)
            return None

        email_message = email.message_from_bytes(msg_data[0][1])

        subject = self._decode_header(email_message["subject"])
        sender = self._decode_header(email_message["from"])
        try:
            date = email.utils.parsedate_to_datetime(email_message["date"])
        except (TypeError, ValueError):
            date = datetime.now(timezone.utc)

        body_text, body_html = self._extract_body(email_message)

        self.logger.debug("Email fetched successfully", email_id=email_id, sender=sender)
        return EmailData(
            email_id=email_id,
            subject=subject,
            sender=sender,
            date=date,
            body_text=body_text,
            body_html=body_html,
            folder=self.config.folder,
        )

    def fetch_emails(
        self,
        from_addresses: Sequence[str],
        subject_patterns: Sequence[str] = (),
        unread_only: bool = True,
        since_days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[EmailData]:
        """
        Fetch candidate booking emails.

        Bodies are fetched with BODY.PEEK so nothing is marked read until
        mark_processed is called.

        Args:
            from_addresses: Sender substrings (platform domains)
            subject_patterns: Case-insensitive subject substrings; empty keeps all
            unread_only: Only unseen messages
            since_days: Only messages from the last N days
            limit: Maximum number of messages

        Returns:
            Emails in mailbox order
        """
        email_ids = self.search_emails(from_addresses, unread_only, since_days, limit)
        patterns = [p.lower() for p in subject_patterns]
        emails = []

        for eid in email_ids:
            email_data = self.fetch_email(eid)
            if email_data is None:
                continue
            if patterns and not any(p in email_data.subject.lower() for p in patterns):
                self.logger.debug("Subject filtered out", email_id=eid, subject=email_data.subject)
                continue
            emails.append(email_data)

        self.logger.info("Fetched emails", count=len(emails), searched=len(email_ids))
        return emails

    def mark_processed(self, email_id: str) -> bool:
        """Set \\Seen on a message. Failures are logged and reported, never raised."""
        if not self.connected:
            return False

        attempts = max(1, self.config.mark_processed_retries)
        for attempt in range(1, attempts + 1):
            try:
                status, _ = self.connection.store(email_id, "+FLAGS", "\\Seen")
            except (imaplib.IMAP4.error, OSError) as e:
                status = "NO"
                self.logger.warning("Error marking email as processed", email_id=email_id,
                                    attempt=attempt, error=str(e))
            if status == "OK":
                self.logger.debug("Marked email as processed", email_id=email_id)
                return True
            if attempt < attempts:
                self.sleep(attempt)

        self.logger.error("Could not mark email as processed", email_id=email_id, attempts=attempts)
        return False

    def _decode_header(self, header: str) -> str:
        """Decode email header safely."""
        if not header:
            return ""

        decoded_string = ""
        for part, encoding in decode_header(header):
            if isinstance(part, bytes):
                try:
                    decoded_string += part.decode(encoding or "utf-8", errors="ignore")
                except LookupError:
                    decoded_string += part.decode("utf-8", errors="ignore")
            else:
                decoded_string += str(part)
        return decoded_string

    def _extract_body(self, email_message) -> tuple[str, str]:
        """Extract text and HTML body from email."""
        body_text = ""
        body_html = ""

        parts = email_message.walk() if email_message.is_multipart() else [email_message]
        for part in parts:
            if part.is_multipart():
                continue
            if "attachment" in str(part.get("Content-Disposition")):
                continue

            payload = part.get_payload(decode=True)
            if payload is None:
                continue
            charset = part.get_content_charset() or "utf-8"
            try:
                body = payload.decode(charset, errors="replace")
            except LookupError:
                body = payload.decode("utf-8", errors="replace")

            content_type = part.get_content_type()
            if content_type == "text/html":
                body_html += body
            elif content_type == "text/plain" or not email_message.is_multipart():
                body_text += body

        return body_text, body_html

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
