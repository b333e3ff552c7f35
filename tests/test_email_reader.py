"""
Unit tests for the email reader module.
"""
import imaplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import Mock

import pytest

from config.settings import MailboxConfig
from src.email_reader.mailbox_client import MailboxClient
from src.utils.errors import ConfigurationError, MailboxError


def raw_message(subject, sender="automated@airbnb.com", text="Reservation body", html=None):
    """Build RFC 822 bytes the way the IMAP server returns them."""
    if html is None:
        msg = MIMEText(text, "plain", "utf-8")
    else:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
    msg["Subject"] = subject
    msg["From"] = sender
    msg["Date"] = "Thu, 08 Jan 2026 10:00:00 +0000"
    return msg.as_bytes()


class TestMailboxClient:
    """Test cases for MailboxClient class."""

    @pytest.fixture
    def mock_imap(self):
        """Mock IMAP connection."""
        imap = Mock()
        imap.login.return_value = ("OK", [b"Logged in"])
        imap.select.return_value = ("OK", [b"3"])
        return imap

    @pytest.fixture
    def factory(self, mock_imap):
        return Mock(return_value=mock_imap)

    @pytest.fixture
    def sleep(self):
        return Mock()

    @pytest.fixture
    def client(self, factory, sleep):
        """Create MailboxClient instance for testing."""
        config = MailboxConfig(email="host@example.com", password="app-password",
                               imap_server="imap.example.com", folder="Bookings")
        return MailboxClient(config, connection_factory=factory, sleep=sleep)

    def test_connect_success(self, client, factory, mock_imap):
        """Test successful mailbox connection."""
        client.connect()

        assert client.connected
        factory.assert_called_once_with("imap.example.com", 993)
        mock_imap.login.assert_called_once_with("host@example.com", "app-password")
        mock_imap.select.assert_called_once_with("Bookings")

    def test_connect_requires_credentials(self, factory):
        """Test missing credentials are a configuration problem."""
        with pytest.raises(ConfigurationError):
            MailboxClient(MailboxConfig(), connection_factory=factory).connect()
        factory.assert_not_called()

    def test_connect_failure(self, client, mock_imap):
        """Test authentication failure raises MailboxError."""
        mock_imap.login.side_effect = imaplib.IMAP4.error("Authentication failed")

        with pytest.raises(MailboxError):
            client.connect()
        assert not client.connected

    def test_connect_network_error(self, client, factory):
        """Test unreachable server raises MailboxError."""
        factory.side_effect = OSError("Connection refused")

        with pytest.raises(MailboxError):
            client.connect()

    def test_missing_folder(self, client, mock_imap):
        """Test unknown folder raises MailboxError."""
        mock_imap.select.return_value = ("NO", [b"Unknown mailbox"])

        with pytest.raises(MailboxError):
            client.connect()

    def test_context_manager_disconnects(self, client, mock_imap):
        """Test the context manager logs out on exit."""
        with client as mailbox:
            assert mailbox.connected

        mock_imap.logout.assert_called_once()
        assert not client.connected

    def test_build_criteria(self, client):
        """Test IMAP search criteria with an OR chain of senders."""
        criteria = client.build_criteria(["airbnb.com", "vrbo.com", "booking.com"])

        assert criteria == ["UNSEEN", "OR", "FROM", '"airbnb.com"', "OR", "FROM", '"vrbo.com"',
                            "FROM", '"booking.com"']

    def test_build_criteria_all_since(self, client):
        """Test read mail and a date window."""
        criteria = client.build_criteria(["airbnb.com"], unread_only=False, since_days=7)

        assert criteria[0] == "ALL"
        assert criteria[1] == "SINCE"
        assert criteria[3:] == ["FROM", '"airbnb.com"']

    def test_search_requires_connection(self, client):
        """Test searching without a connection."""
        with pytest.raises(MailboxError):
            client.search_emails(["airbnb.com"])

    def test_search_failure(self, client, mock_imap):
        """Test server-side search failure."""
        client.connect()
        mock_imap.search.return_value = ("NO", [b""])

        with pytest.raises(MailboxError):
            client.search_emails(["airbnb.com"])

    def test_fetch_emails_filters_subjects(self, client, mock_imap):
        """Test subject patterns are applied to fetched emails."""
        client.connect()
        mock_imap.search.return_value = ("OK", [b"1 2 3"])
        messages = {
            "1": raw_message("Reservation confirmed - John Smith arrives Jan 15"),
            "2": raw_message("Your listing performance this week"),
            "3": raw_message("Instant Booking from Jane", html="<p>Booked</p>"),
        }
        mock_imap.fetch.side_effect = lambda eid, parts: ("OK", [(b"RFC822", messages[eid])])

        emails = client.fetch_emails(["airbnb.com"], subject_patterns=["reservation confirmed",
                                                                       "Instant Booking from"])

        assert [e.email_id for e in emails] == ["1", "3"]
        assert emails[0].sender == "automated@airbnb.com"
        assert emails[0].folder == "Bookings"
        assert emails[0].body_text == "Reservation body"
        assert emails[1].body_html == "<p>Booked</p>"
        assert mock_imap.fetch.call_args.args[1] == "(BODY.PEEK[])"

    def test_fetch_emails_limit(self, client, mock_imap):
        """Test the per-run limit is applied to search results."""
        client.connect()
        mock_imap.search.return_value = ("OK", [b"1 2 3"])
        mock_imap.fetch.return_value = ("OK", [(b"RFC822", raw_message("Reservation confirmed"))])

        emails = client.fetch_emails(["airbnb.com"], limit=2)

        assert len(emails) == 2

    def test_fetch_email_failure_skipped(self, client, mock_imap):
        """Test a message the server refuses is skipped."""
        client.connect()
        mock_imap.search.return_value = ("OK", [b"1"])
        mock_imap.fetch.return_value = ("NO", [None])

        assert client.fetch_emails(["airbnb.com"]) == []

    def test_decode_encoded_subject(self, client):
        """Test RFC 2047 subjects are decoded."""
        assert client._decode_header("=?utf-8?q?R=C3=A9servation_confirm=C3=A9e?=") == \
            "Réservation confirmée"
        assert client._decode_header(None) == ""

    def test_mark_processed(self, client, mock_imap):
        """Test marking an email as seen."""
        client.connect()
        mock_imap.store.return_value = ("OK", [b""])

        assert client.mark_processed("7") is True
        mock_imap.store.assert_called_once_with("7", "+FLAGS", "\\Seen")

    def test_mark_processed_retries(self, client, mock_imap, sleep):
        """Test transient failures are retried with backoff."""
        client.connect()
        mock_imap.store.side_effect = [imaplib.IMAP4.abort("dropped"), ("NO", []), ("OK", [])]

        assert client.mark_processed("7") is True
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    def test_mark_processed_gives_up(self, client, mock_imap, sleep):
        """Test failures after the retry budget are reported, not raised."""
        client.connect()
        mock_imap.store.return_value = ("NO", [])

        assert client.mark_processed("7") is False
        assert mock_imap.store.call_count == 3

    def test_mark_processed_without_connection(self, client):
        assert client.mark_processed("7") is False
