import os
import re
import httpx
from typing import Dict, Any, Optional
import json
import logging

from .twiml import public_base_url

# Set up logger
logger = logging.getLogger(__name__)


class VapiNotConfigured(RuntimeError):
    pass


def to_e164(phone: str) -> str:
    """Digits only; a bare 10-digit number is taken as North American."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


class VapiClient:
    def __init__(self) -> None:
        self.api_key = os.getenv("VAPI_PRIVATE_KEY")
        self.assistant_id = os.getenv("VAPI_ASSISTANT_ID")
        self.phone_number_id = os.getenv("VAPI_PHONE_NUMBER_ID")
        self.base_url = os.getenv("VAPI_BASE_URL", "https://api.vapi.ai").rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def webhook_url(self) -> str:
        explicit = os.getenv("VAPI_WEBHOOK_URL")
        if explicit:
            return explicit
        return f"{public_base_url()}/api/vapi/webhook"

    async def create_phone_call(self, customer_number: str, customer_name: Optional[str] = None) -> Dict[str, Any]:
        """Start an outbound assistant call through VAPI.

        Raises VapiNotConfigured when credentials are missing and
        httpx.HTTPStatusError when VAPI rejects the request.
        """
        if not self.is_configured:
            raise VapiNotConfigured("VAPI_PRIVATE_KEY not configured")
        if not self.assistant_id or not self.phone_number_id:
            raise VapiNotConfigured("VAPI_ASSISTANT_ID and VAPI_PHONE_NUMBER_ID must be configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        webhook_url = self.webhook_url()
        payload = {
            "assistantId": self.assistant_id,
            "phoneNumberId": self.phone_number_id,
            "customer": {
                "number": customer_number,
                "name": customer_name or "Customer",
            },
            # Route the call's events back to our webhook
            "assistantOverrides": {
                "serverUrl": webhook_url,
            },
        }

        logger.info(f"Initiating VAPI call to {customer_number} with webhook URL: {webhook_url}")
        logger.debug(f"VAPI API payload: {json.dumps(payload, indent=2)}")

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/call/phone",
                    headers=headers,
                    json=payload,
                    timeout=30.0
                )
                logger.info(f"VAPI API response: {response.status_code}")
                response.raise_for_status()
                result = response.json()
                logger.info(f"VAPI call initiated: id={result.get('id')} status={result.get('status')}")
                return result
        except httpx.HTTPStatusError as e:
            logger.error(f"VAPI API HTTP error: {e.response.status_code} - {e.response.text}")
            raise
        except httpx.RequestError as e:
            logger.error(f"VAPI API request error: {str(e)}")
            raise
