# cleaner_communications/sms_client.py
from twilio.rest import Client

from config.settings import TwilioConfig
from ..utils.logger import get_logger


class SMSClient:
    def __init__(self, config: TwilioConfig, client: Client = None):
        self.logger = get_logger("sms_client")
        self.client = client or Client(config.sid, config.auth_token)
        self.from_number = config.from_number

    def send(self, to: str, body: str):
        try:
            msg = self.client.messages.create(
                body=body,
                from_=self.from_number,
                to=to
            )
            self.logger.info("twilio_sms_sent", sid=getattr(msg, "sid", None), status=getattr(msg, "status", None), to=to)
            return msg.sid
        except Exception as e:
            self.logger.error("twilio_sms_failed", error=str(e), to=to, from_number=self.from_number)
            raise
