"""
Outbound messaging collaborator.

send(recipient, text, media_url) either returns normally or raises
ExternalServiceError; retry/backoff belongs to the transport, not here.
"""
import logging
from typing import Optional

import httpx

from ...config import MESSAGING_TIMEOUT_SECONDS, WHATSAPP_API_KEY, WHATSAPP_SERVER_URL
from ..errors import ExternalServiceError


logger = logging.getLogger(__name__)


class MessagingClient:
    def send(self, recipient: str, text: str, media_url: Optional[str] = None) -> None:
        raise NotImplementedError


class WhatsAppGatewayClient(MessagingClient):
    """
    HTTP bridge in front of a WhatsApp session.

    - POST /send-media   {phoneE164, fileUrl, caption}
    - POST /send-message {phoneE164, message}
    """

    def __init__(
        self,
        base_url: str = WHATSAPP_SERVER_URL,
        api_key: str = WHATSAPP_API_KEY,
        timeout: float = MESSAGING_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"X-API-Key": api_key, "Content-Type": "application/json"},
        )

    def send(self, recipient: str, text: str, media_url: Optional[str] = None) -> None:
        if media_url:
            path = "/send-media"
            payload = {"phoneE164": recipient, "fileUrl": media_url, "caption": text}
        else:
            path = "/send-message"
            payload = {"phoneE164": recipient, "message": text}

        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Message delivery to {recipient} failed: {e}")
        logger.debug(f"Gateway accepted {path} for {recipient}")
