import logging
import re
import httpx

from dental_funnel.core.config import settings
from dental_funnel.core.errors import AdapterFailed, ConfigurationError
from dental_funnel.platform.ports.messaging import MessagingPort

log = logging.getLogger(__name__)


def normalize_phone(raw: str, country_code: str | None = None) -> str:
    """Digits only, prefixed with the country code when it is missing."""
    cc = country_code or settings.DEFAULT_COUNTRY_CODE
    digits = re.sub(r"\D", "", raw or "")
    if digits and not digits.startswith(cc):
        digits = cc + digits
    return digits


class WhatsAppMessaging(MessagingPort):
    channel = "whatsapp"

    def __init__(self, api_token: str | None = None, phone_number_id: str | None = None,
                 api_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_token = api_token or settings.WHATSAPP_API_TOKEN
        self.phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self.api_url = (api_url or settings.WHATSAPP_API_URL).rstrip("/")
        self.transport = transport

    async def send_text(self, to: str, body: str) -> str | None:
        if not self.api_token or not self.phone_number_id:
            raise ConfigurationError("WhatsApp not configured")
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone(to),
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
                resp = await client.post(
                    f"{self.api_url}/{self.phone_number_id}/messages",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_token}"},
                )
        except httpx.HTTPError as e:
            raise AdapterFailed(f"WhatsApp unreachable: {e}") from e
        if resp.status_code >= 400:
            raise AdapterFailed(f"WhatsApp send failed with {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise AdapterFailed(f"WhatsApp returned a non-JSON body ({resp.status_code})") from e
        messages = data.get("messages") if isinstance(data, dict) else None
        if not messages or not isinstance(messages[0], dict):
            return None
        return messages[0].get("id")
