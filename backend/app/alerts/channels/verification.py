"""
verification.py — Verification anchors for alert records.

An anchor takes the alert's payload and returns an opaque reference
string that can later prove the alert existed (a ledger transaction
hash, an audit-log id, ...). The engine treats anchoring as best
effort: a failure is recorded on the trigger report and the alert
simply stays without a reference.

    async record(payload: dict) → str      raises VerificationAnchorError

Anchors:
    SimulatedLedgerAnchor — random "0x…" placeholder reference
    HttpLedgerAnchor      — POST the payload to a service with httpx and
                            read "reference" (or "tx_hash") from the reply
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import VerificationAnchorError

logger = logging.getLogger(__name__)


class VerificationAnchor(Protocol):
    async def record(self, payload: Dict[str, Any]) -> str: ...


class SimulatedLedgerAnchor:
    """Returns a shortened pseudo transaction hash."""

    async def record(self, payload: Dict[str, Any]) -> str:
        reference = f"0x{secrets.token_hex(4)}...{secrets.token_hex(4)}"
        logger.info(
            "[LEDGER] Simulated anchor for %s → %s",
            payload.get("alert_id"), reference,
        )
        return reference


class HttpLedgerAnchor:
    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint_url = endpoint_url or settings.VERIFICATION_ENDPOINT_URL
        self.api_key = api_key or settings.VERIFICATION_API_KEY
        self._client = client

    async def record(self, payload: Dict[str, Any]) -> str:
        if not self.endpoint_url:
            raise VerificationAnchorError("no endpoint configured")

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint_url, json=payload, headers=headers,
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.endpoint_url, json=payload, headers=headers,
                    )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise VerificationAnchorError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise VerificationAnchorError("invalid JSON in response") from exc

        reference = body.get("reference") or body.get("tx_hash")
        if not reference or not isinstance(reference, str):
            raise VerificationAnchorError("response carried no reference")
        return reference


def build_anchor(provider: Optional[str] = None) -> Optional[VerificationAnchor]:
    """Anchor for the configured provider; None when anchoring is disabled."""
    provider = provider or settings.VERIFICATION_PROVIDER
    if provider == "disabled":
        return None
    if provider == "simulation":
        return SimulatedLedgerAnchor()
    if provider == "http":
        return HttpLedgerAnchor()
    raise ValueError(f"Unknown verification provider: {provider}")
