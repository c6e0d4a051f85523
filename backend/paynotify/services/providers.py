"""
HTTP adapters for the payment provider and the email provider.

No retry logic lives here; failures surface as ``ProviderError`` and the
worker decides whether to try again.
"""
import logging
from typing import Any

import httpx
from paynotify.core.exceptions import ProviderError

logger = logging.getLogger(__name__)


class StripeClient:
    service_name = "stripe"

    def __init__(self, api_key: str, base_url: str = "https://api.stripe.com", timeout: float = 10.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch_event(self, event_id: str) -> dict[str, Any]:
        """Fetch the canonical event by id."""
        try:
            r = httpx.get(
                f"{self.base_url}/v1/events/{event_id}",
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.service_name, f"event fetch failed: {exc}") from exc

        if not r.is_success:
            raise ProviderError.from_response(self.service_name, "event fetch", r)
        try:
            return r.json()
        except ValueError as exc:
            raise ProviderError(
                self.service_name, "event fetch returned invalid JSON", status=r.status_code
            ) from exc


class ResendClient:
    service_name = "resend"

    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def send_email(self, to: str, subject: str, text: str, html: str) -> None:
        try:
            r = httpx.post(
                f"{self.base_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": to,
                    "subject": subject,
                    "text": text,
                    "html": html,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.service_name, f"send failed: {exc}") from exc

        if not r.is_success:
            raise ProviderError.from_response(self.service_name, "send", r)
        logger.info(
            "Email accepted by provider",
            extra={"extra_data": {"status": r.status_code}},
        )
