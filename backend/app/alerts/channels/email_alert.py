"""
email_alert.py — SOS e-mail notification gateway.

Delivery mechanism:
    • "simulation" — log the rendered message and report success
    • "http"       — POST the rendered message to a hosted send-email
                     function (JSON: to, from, subject, html, text) with httpx

The gateway contract is one call per recipient:

    async notify(recipient_address, sender_name, location, timestamp) → bool
    async send_photo(recipient_address, photo_data, subject) → bool

`send_photo` forwards a captured photo (a data URL or base64 string) to a
single contact through the same send-email function.

True means the provider accepted the message. False or an exception
means this recipient was not notified; other recipients are unaffected.
Timeouts are imposed by the caller (the alert engine).

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🆘 SOS Alert from {sender_name}
    Body:
        ┌─────────────────────────────────────────┐
        │  EMERGENCY ALERT                         │
        │  {sender_name} has triggered an SOS      │
        ├─────────────────────────────────────────┤
        │  Location: {lat}, {lon} / address        │
        │  Time: {UTC timestamp}                   │
        │                                          │
        │  [Open in Maps]                          │
        └─────────────────────────────────────────┘
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.app.alerts.models import GeoLocation
from backend.app.core.config import settings
from backend.app.core.logging_config import mask_address

logger = logging.getLogger(__name__)

PROVIDERS = ("simulation", "http")
DEFAULT_PHOTO_SUBJECT = "Photo from Safety App"


class NotificationGateway(Protocol):
    async def notify(
        self,
        recipient_address: str,
        sender_name: str,
        location: GeoLocation,
        timestamp: int,
    ) -> bool: ...

    async def send_photo(
        self, recipient_address: str, photo_data: str, subject: str = DEFAULT_PHOTO_SUBJECT,
    ) -> bool: ...


def _format_time(timestamp: int) -> str:
    dt = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def map_link(location: GeoLocation, template: Optional[str] = None) -> str:
    template = template or settings.MAP_LINK_TEMPLATE
    return template.format(latitude=location.latitude, longitude=location.longitude)


def build_subject(sender_name: str) -> str:
    return f"🆘 SOS Alert from {sender_name}"


def build_html_body(sender_name: str, location: GeoLocation, timestamp: int) -> str:
    """Render a simple HTML e-mail body."""
    name = html.escape(sender_name)
    where = html.escape(location.describe())
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <div style="background:#B71C1C;color:white;padding:16px;border-radius:8px 8px 0 0;">
        <h2 style="margin:0;">EMERGENCY ALERT</h2>
        <p style="margin:4px 0 0;">{name} has triggered an SOS alert and may need help.</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:16px;border-radius:0 0 8px 8px;">
        <p><strong>Location:</strong> {where}</p>
        <p><strong>Coordinates:</strong> ({location.latitude:.6f}, {location.longitude:.6f})</p>
        <p><strong>Time:</strong> {_format_time(timestamp)}</p>
        <div style="margin-top:16px;">
          <a href="{html.escape(map_link(location))}"
             style="background:#B71C1C;color:white;padding:10px 20px;text-decoration:none;border-radius:4px;">
            Open in Maps
          </a>
        </div>
      </div>
    </div>
    """


def build_plain_body(sender_name: str, location: GeoLocation, timestamp: int) -> str:
    return (
        f"EMERGENCY ALERT\n"
        f"{sender_name} has triggered an SOS alert and may need help.\n\n"
        f"Location: {location.describe()}\n"
        f"Coordinates: ({location.latitude:.6f}, {location.longitude:.6f})\n"
        f"Time: {_format_time(timestamp)}\n"
        f"Map: {map_link(location)}\n"
    )


def build_photo_html(photo_data: str) -> str:
    src = photo_data if photo_data.startswith("data:") else f"data:image/jpeg;base64,{photo_data}"
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">'
        "<p>A photo was shared with you from the Safety App.</p>"
        f'<img src="{html.escape(src)}" alt="Shared photo" style="max-width:100%;"/>'
        "</div>"
    )


class EmailNotificationGateway:
    """
    Sends one SOS e-mail per call.

    Parameters
    ----------
    provider : str
        "simulation" or "http".
    endpoint_url : str | None
        Send-email function URL (provider="http").
    api_key : str | None
        Sent as a bearer token to the endpoint.
    from_address : str
    client : httpx.AsyncClient | None
        Shared client; one is created per call when omitted.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        *,
        endpoint_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider or settings.NOTIFY_PROVIDER
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown e-mail provider: {self.provider}")
        self.endpoint_url = endpoint_url or settings.NOTIFY_ENDPOINT_URL
        self.api_key = api_key or settings.NOTIFY_API_KEY
        self.from_address = from_address or settings.NOTIFY_FROM_ADDRESS
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self.provider == "simulation" or bool(self.endpoint_url)

    def render(
        self,
        recipient_address: str,
        sender_name: str,
        location: GeoLocation,
        timestamp: int,
    ) -> Dict[str, Any]:
        return {
            "to": recipient_address,
            "from": self.from_address,
            "subject": build_subject(sender_name),
            "html": build_html_body(sender_name, location, timestamp),
            "text": build_plain_body(sender_name, location, timestamp),
        }

    async def notify(
        self,
        recipient_address: str,
        sender_name: str,
        location: GeoLocation,
        timestamp: int,
    ) -> bool:
        message = self.render(recipient_address, sender_name, location, timestamp)

        if self.provider == "simulation":
            logger.info(
                "[EMAIL] SOS from %s → %s: Subject='%s'",
                sender_name, mask_address(recipient_address), message["subject"],
            )
            return True

        return await self._post(message)

    async def _post(self, message: Dict[str, Any]) -> bool:
        if not self.endpoint_url:
            logger.error("[EMAIL/HTTP] No endpoint configured")
            return False

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint_url, json=message, headers=headers,
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint_url, json=message, headers=headers,
                    )
        except httpx.HTTPError as exc:
            logger.error("[EMAIL/HTTP] Failed for %s: %s", mask_address(message["to"]), exc)
            return False

        if response.is_success:
            return True

        logger.error(
            "[EMAIL/HTTP] Provider rejected %s: HTTP %d",
            mask_address(message["to"]), response.status_code,
        )
        return False

    async def send_photo(
        self,
        recipient_address: str,
        photo_data: str,
        subject: str = DEFAULT_PHOTO_SUBJECT,
    ) -> bool:
        """Send one captured photo to a single recipient."""
        message = {
            "to": recipient_address,
            "from": self.from_address,
            "subject": subject,
            "photoData": photo_data,
            "html": build_photo_html(photo_data),
            "text": "A photo was shared with you from the Safety App.",
        }

        if self.provider == "simulation":
            logger.info(
                "[EMAIL] Photo → %s: Subject='%s' (%d chars)",
                mask_address(recipient_address), subject, len(photo_data),
            )
            return True

        return await self._post(message)
