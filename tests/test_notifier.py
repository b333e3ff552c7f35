"""
Unit tests for cleaner communications.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from config.settings import SmtpConfig, TwilioConfig
from src.cleaner_communications.email_client import CalendarAttachment, EmailClient
from src.cleaner_communications.notifier import CleanerNotifier
from src.cleaner_communications.sms_client import SMSClient
from src.utils.models import CleanerContact, WorkflowExecution


@pytest.fixture
def execution(sample_booking, lake_house):
    return WorkflowExecution(
        execution_id="exec-1",
        booking=sample_booking,
        property=lake_house,
        owner_email="pat@example.com",
        scheduled_cleaning_at=datetime(2026, 1, 18, 17, 0, tzinfo=timezone.utc),
        contacted_cleaners=["Alice", "Bob"],
    )


@pytest.fixture
def email_client():
    client = Mock()
    client.smtp_server = "smtp.example.com"
    return client


@pytest.fixture
def sms_client():
    return Mock()


@pytest.fixture
def notifier(email_client, sms_client, workflow_config):
    return CleanerNotifier(email_client, workflow_config, sms_client=sms_client)


@pytest.fixture
def alice(lake_house):
    return lake_house.cleaners[1]


class TestNotifyCleaner:

    def test_email_and_sms_carry_callback_links(self, notifier, email_client, sms_client, execution, alice):
        assert notifier.notify_cleaner(execution, alice, "tok_abcdefghijklmnop") is True

        kwargs = email_client.send.call_args.kwargs
        assert kwargs["to"] == "alice@example.com"
        assert kwargs["subject"] == "Cleaning Request - Lake House on 2026-01-18"
        yes = "https://turnover.example.com/api/v1/callback?token=tok_abcdefghijklmnop&response=yes"
        no = "https://turnover.example.com/api/v1/callback?token=tok_abcdefghijklmnop&response=no"
        assert yes in kwargs["body"] and no in kwargs["body"]
        assert yes.replace("&", "&amp;") in kwargs["html"]
        assert "Sunday, January 18, 2026 at 12:00 PM EST" in kwargs["body"]
        assert "Estimated duration: 2.5 hours" in kwargs["body"]

        sms_kwargs = sms_client.send.call_args.kwargs
        assert sms_kwargs["to"] == "+15550001"
        assert yes in sms_kwargs["body"]

    def test_html_body_escapes_names(self, notifier, email_client, execution):
        execution.property.metadata.property_name = "Tom & Jerry's <Cabin>"
        execution.property.metadata.owner_name = "Pat <Owner>"
        cleaner = CleanerContact(name="<b>Eve</b>", email="eve@example.com", rank=3)

        notifier.notify_cleaner(execution, cleaner, "tok_abcdefghijklmnop")

        html = email_client.send.call_args.kwargs["html"]
        assert "<b>Eve</b>" not in html
        assert "Hi &lt;b&gt;Eve&lt;/b&gt;," in html
        assert "Tom &amp; Jerry&#x27;s &lt;Cabin&gt;" in html
        assert "Pat &lt;Owner&gt;" in html

    def test_one_channel_is_enough(self, notifier, email_client, execution, alice):
        email_client.send.side_effect = OSError("smtp down")

        assert notifier.notify_cleaner(execution, alice, "tok_abcdefghijklmnop") is True

    def test_all_channels_failing(self, notifier, email_client, sms_client, execution, alice):
        email_client.send.side_effect = OSError("smtp down")
        sms_client.send.side_effect = RuntimeError("twilio down")

        assert notifier.notify_cleaner(execution, alice, "tok_abcdefghijklmnop") is False

    def test_no_contact_details(self, notifier, email_client, execution):
        assert notifier.notify_cleaner(execution, CleanerContact(name="Ghost"), "tok_abcdefghijklmnop") is False
        email_client.send.assert_not_called()

    def test_sms_disabled(self, email_client, workflow_config, execution, alice):
        notifier = CleanerNotifier(email_client, workflow_config)
        email_client.send.side_effect = OSError("smtp down")

        assert notifier.notify_cleaner(execution, alice, "tok_abcdefghijklmnop") is False


class TestCalendarInvite:

    def test_invite_attached_and_owner_copied(self, notifier, email_client, execution, alice):
        assert notifier.send_calendar_invite(execution, alice) is True

        kwargs = email_client.send.call_args.kwargs
        assert kwargs["cc"] == ["pat@example.com"]
        assert kwargs["subject"] == "Cleaning Scheduled - Lake House on 2026-01-18"
        attachment = kwargs["calendar"]
        assert isinstance(attachment, CalendarAttachment)
        assert attachment.filename == "cleaning-2026-01-18.ics"
        assert "UID:exec-1@turnover" in attachment.content
        assert "Access: Lockbox code 1234" in kwargs["body"]

    def test_cleaner_without_email(self, notifier, email_client, execution):
        assert notifier.send_calendar_invite(execution, CleanerContact(name="Dee", phone="+1555")) is False
        email_client.send.assert_not_called()

    def test_send_failure(self, notifier, email_client, execution, alice):
        email_client.send.side_effect = OSError("smtp down")

        assert notifier.send_calendar_invite(execution, alice) is False


class TestOwnerAlert:

    def test_lists_contacted_cleaners(self, notifier, email_client, execution):
        assert notifier.notify_owner_exhausted(execution) is True

        kwargs = email_client.send.call_args.kwargs
        assert kwargs["to"] == "pat@example.com"
        assert kwargs["subject"].startswith("ACTION NEEDED: No cleaner for Lake House")
        assert "  - Alice\n  - Bob" in kwargs["body"]
        assert "airbnb HM123456789" in kwargs["body"]

    def test_no_owner_email(self, notifier, email_client, execution):
        execution.owner_email = ""

        assert notifier.notify_owner_exhausted(execution) is False
        email_client.send.assert_not_called()


class TestEmailClient:

    @pytest.fixture
    def client(self):
        return EmailClient(SmtpConfig(server="smtp.example.com", port=2525, username="bot@example.com",
                                      password="secret"))

    def test_plain_and_html_message(self, client):
        msg = client.build_message("alice@example.com", "Hello", "plain", html="<p>html</p>")

        assert msg["To"] == "alice@example.com"
        assert msg["From"] == "bot@example.com"
        assert [p.get_content_type() for p in msg.get_payload()] == ["text/plain", "text/html"]

    def test_calendar_message(self, client):
        msg = client.build_message("alice@example.com", "Invite", "body", cc=["pat@example.com"],
                                   calendar=CalendarAttachment("c.ics", "BEGIN:VCALENDAR\r\n"))

        assert msg.get_content_type() == "multipart/mixed"
        assert msg["Cc"] == "pat@example.com"
        part = msg.get_payload()[1]
        assert part.get_content_type() == "text/calendar"
        assert part.get_param("method") == "REQUEST"
        assert part.get_filename() == "c.ics"

    def test_send_uses_starttls_and_all_recipients(self, client, mocker):
        smtp = mocker.patch("src.cleaner_communications.email_client.smtplib.SMTP")
        server = smtp.return_value.__enter__.return_value

        client.send("alice@example.com", "Hello", "body", cc=["pat@example.com"])

        smtp.assert_called_once_with("smtp.example.com", 2525)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "secret")
        assert server.sendmail.call_args.args[1] == ["alice@example.com", "pat@example.com"]


class TestSMSClient:

    def test_send_returns_sid(self):
        twilio = Mock()
        twilio.messages.create.return_value = Mock(sid="SM1", status="queued")
        client = SMSClient(TwilioConfig(sid="AC1", auth_token="t", from_number="+1000"), client=twilio)

        assert client.send("+15550001", "hi") == "SM1"
        twilio.messages.create.assert_called_once_with(body="hi", from_="+1000", to="+15550001")

    def test_send_failure_is_raised(self):
        twilio = Mock()
        twilio.messages.create.side_effect = RuntimeError("bad number")
        client = SMSClient(TwilioConfig(sid="AC1", auth_token="t", from_number="+1000"), client=twilio)

        with pytest.raises(RuntimeError):
            client.send("+1", "hi")
