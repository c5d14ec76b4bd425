"""
WhatsApp Service - text messages through the WhatsApp Cloud API.
"""
import os
import re
import logging
from typing import List

import requests

from errors import ExternalServiceError, ServiceUnavailableError, ValidationError

logger = logging.getLogger("gym_app")

GRAPH_API_URL = "https://graph.facebook.com/v20.0"


class WhatsAppService:
    """Sends plain text messages; phone numbers are normalised to E.164 first."""

    def __init__(self):
        self.token = os.getenv("WHATSAPP_TOKEN", "")
        self.phone_number_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
        self.default_country_code = os.getenv("WHATSAPP_DEFAULT_COUNTRY_CODE", "62")

    def is_configured(self) -> bool:
        return bool(self.token and self.phone_number_id)

    def normalize_phone(self, phone: str) -> str:
        """
        '+62 812-3456-789' -> '+628123456789'
        '0812 3456 789'    -> '+628123456789'
        '628123456789'     -> '+628123456789'
        '8123456789'       -> '+628123456789'
        """
        cleaned = re.sub(r"[\s\-().]", "", phone or "")
        cc = self.default_country_code

        if cleaned.startswith("+"):
            digits = cleaned[1:]
        elif cleaned.startswith(cc):
            digits = cleaned
        elif cleaned.startswith("0"):
            digits = cc + cleaned[1:]
        else:
            digits = cc + cleaned

        if not digits.isdigit() or not 9 <= len(digits) <= 15:
            raise ValidationError(f"Invalid phone number: {phone}")
        return f"+{digits}"

    def send_text(self, phone: str, text: str) -> dict:
        if not self.is_configured():
            raise ServiceUnavailableError("WhatsApp is not configured")

        to_phone = self.normalize_phone(phone)
        url = f"{GRAPH_API_URL}/{self.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        payload = {
            "messaging_product": "whatsapp",
            "to": to_phone.lstrip("+"),
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        try:
            r = requests.post(url, headers=headers, json=payload, timeout=20)
        except requests.RequestException as e:
            logger.error(f"WhatsApp request to {to_phone} failed: {e}")
            raise ExternalServiceError("WhatsApp request failed") from e

        if not 200 <= r.status_code < 300:
            logger.error(f"WhatsApp API error {r.status_code} for {to_phone}: {r.text[:300]}")
            raise ExternalServiceError(f"WhatsApp API returned {r.status_code}")

        data = r.json()
        message_id = (data.get("messages") or [{}])[0].get("id")
        logger.info(f"WhatsApp message sent to {to_phone} ({message_id})")
        return {"phone": to_phone, "message_id": message_id}

    def send_bulk(self, phones: List[str], text: str) -> dict:
        """Send to many recipients; a failing recipient does not stop the rest."""
        if not self.is_configured():
            raise ServiceUnavailableError("WhatsApp is not configured")

        sent, failed = [], []
        for phone in phones:
            try:
                sent.append(self.send_text(phone, text))
            except (ValidationError, ExternalServiceError) as e:
                failed.append({"phone": phone, "error": e.message})
        return {"sent": len(sent), "failed": len(failed), "results": sent, "errors": failed}


# Singleton
_whatsapp_service = WhatsAppService()

def get_whatsapp_service() -> WhatsAppService:
    return _whatsapp_service
