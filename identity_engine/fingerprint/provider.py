"""Fingerprint Pro Server API client.

Resolves the browser agent's identification request into the stable
``visitorId`` the provider assigns to a device/visitor.  The linker uses the
returned value purely as an equality key; nothing here derives or hashes a
fingerprint locally.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from identity_engine.common.config import FingerprintRegion, ServiceConfig
from identity_engine.common.errors import FingerprintUnavailable
from identity_engine.common.metrics import fingerprint_resolution_seconds
from identity_engine.storage.models.contact import IdentitySignals

logger = logging.getLogger(__name__)

REGION_BASE_URLS: dict[str, str] = {
    "us": "https://api.fpjs.io",
    "eu": "https://eu.api.fpjs.io",
    "ap": "https://ap.api.fpjs.io",
}


class FingerprintProClient:
    """Looks up visitor ids through the Fingerprint Pro ``/events`` endpoint.

    Usage::

        client = FingerprintProClient(api_key="...", region="ap")
        visitor_id = await client.resolve(IdentitySignals(request_id="1708..."))
        await client.aclose()
    """

    def __init__(
        self,
        api_key: str,
        region: FingerprintRegion = "ap",
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=REGION_BASE_URLS[region],
            timeout=timeout_s,
            headers={"Auth-API-Key": api_key},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: ServiceConfig) -> FingerprintProClient:
        if not config.fingerprint_api_key:
            logger.warning("FINGERPRINT_API_KEY not set -- every lookup will be rejected")
        return cls(
            api_key=config.fingerprint_api_key,
            region=config.fingerprint_region,
            timeout_s=config.fingerprint_timeout_s,
        )

    async def resolve(self, signals: IdentitySignals) -> str:
        """Return the provider's visitor id for the agent request in *signals*.

        Raises:
            FingerprintUnavailable: no request id was supplied, the provider
                could not be reached or answered with an error, or the event
                carries no visitor id.
        """
        if not signals.request_id:
            raise FingerprintUnavailable("No fingerprint request id supplied")

        with fingerprint_resolution_seconds.time():
            try:
                resp = await self._http.get(f"/events/{quote(signals.request_id, safe='')}")
                resp.raise_for_status()
                payload: Any = resp.json()
            except httpx.HTTPStatusError as exc:
                logger.warning(
                    "Fingerprint lookup rejected (status=%d)", exc.response.status_code
                )
                raise FingerprintUnavailable("Fingerprint provider rejected the request") from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Fingerprint lookup failed: %s", exc)
                raise FingerprintUnavailable("Fingerprint provider unavailable") from exc

        visitor_id = _extract_visitor_id(payload)
        if not visitor_id:
            raise FingerprintUnavailable("Fingerprint provider returned no visitor id")
        return visitor_id

    async def aclose(self) -> None:
        await self._http.aclose()


def _extract_visitor_id(payload: Any) -> str | None:
    node = payload
    for key in ("products", "identification", "data", "visitorId"):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, str) and node else None
