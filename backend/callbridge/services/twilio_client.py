import os
import logging
from typing import Optional

from twilio.rest import Client as TwilioRestClient

logger = logging.getLogger(__name__)


class TwilioVoiceClient:
    def __init__(self) -> None:
        self.account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        self.auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        self.phone_number = os.getenv("TWILIO_PHONE_NUMBER", "")

        self.client: Optional[TwilioRestClient] = None
        if self.account_sid and self.auth_token:
            self.client = TwilioRestClient(self.account_sid, self.auth_token)
        else:
            logger.warning("TwilioVoiceClient: Twilio credentials not configured")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def hang_up(self, call_sid: str) -> None:
        """Complete a live call on Twilio's side."""
        if not self.is_configured:
            raise RuntimeError("Twilio credentials not configured")
        logger.info(f"Hanging up Twilio call {call_sid}")
        self.client.calls(call_sid).update(status="completed")
