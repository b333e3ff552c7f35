# cleaner_communications/email_client.py
import smtplib
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Sequence

from config.settings import SmtpConfig


class CalendarAttachment:
    """An .ics file attached to an outgoing email."""

    def __init__(self, filename: str, content: str, method: str = "REQUEST"):
        self.filename = filename
        self.content = content
        self.method = method


class EmailClient:
    def __init__(self, config: SmtpConfig):
        self.smtp_server = config.server
        self.smtp_port = config.port
        self.username = config.username
        self.password = config.password
        self.from_address = config.from_address or config.username

    def build_message(self, to: str, subject: str, body: str, html: Optional[str] = None,
                      cc: Sequence[str] = (), calendar: Optional[CalendarAttachment] = None):
        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(body, "plain"))
        if html:
            alternative.attach(MIMEText(html, "html"))

        if calendar is None:
            msg = alternative
        else:
            msg = MIMEMultipart("mixed")
            msg.attach(alternative)
            part = MIMEBase("text", "calendar", method=calendar.method, name=calendar.filename)
            part.set_payload(calendar.content.encode("utf-8"))
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=calendar.filename)
            msg.attach(part)

        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        if cc:
            msg["Cc"] = ", ".join(cc)
        return msg

    def send(self, to: str, subject: str, body: str, html: Optional[str] = None,
             cc: Sequence[str] = (), calendar: Optional[CalendarAttachment] = None):
        msg = self.build_message(to, subject, body, html=html, cc=cc, calendar=calendar)
        recipients: List[str] = [to, *cc]

        with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.sendmail(self.from_address, recipients, msg.as_string())
