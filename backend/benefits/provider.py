"""Disbursement provider clients (benefits-card API).

Two implementations share the same async interface:

* ``HttpDisbursementProvider`` talks to the provider's REST API with httpx.
* ``SimulatedDisbursementProvider`` is used when no provider URL is
  configured (local development); it answers every batch with a
  ``<PREFIX>-<millis>`` reference in ``Processing``.

Routers obtain one through the ``get_disbursement_provider`` dependency so
tests can swap in a fake via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import httpx

from backend.common.constants import ProviderStatus
from backend.common.exceptions import DisbursementProviderException
from backend.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderBatchResult:
    reference: str
    status: ProviderStatus
    raw: dict[str, Any] = field(default_factory=dict)


def _parse_status(value: Any) -> ProviderStatus:
    try:
        return ProviderStatus(value)
    except ValueError:
        raise DisbursementProviderException(
            f"Provider returned an unknown batch status {value!r}."
        )


# ── HTTP client ─────────────────────────────────────────────────────

class HttpDisbursementProvider:
    """Async client for the benefits-card provider's batch API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self, method: str, path: str, *, reference: Optional[str] = None, **kwargs,
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException:
            logger.error("Disbursement provider timed out on %s %s", method, path)
            raise DisbursementProviderException(
                f"Disbursement provider timed out after {self.timeout}s."
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Disbursement provider rejected %s %s: %s %s",
                method, path, exc.response.status_code, exc.response.text[:500],
            )
            raise DisbursementProviderException(
                f"Disbursement provider responded with HTTP {exc.response.status_code}."
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Disbursement provider call failed: %s %s", method, path)
            raise DisbursementProviderException(
                f"Disbursement provider call failed: {exc}"
            )

        if not isinstance(data, dict):
            logger.error(
                "Disbursement provider returned %s instead of an object on %s %s",
                type(data).__name__, method, path,
            )
            raise DisbursementProviderException(
                "Disbursement provider response is not a JSON object.",
                reference=reference,
            )
        return data

    async def submit_batch(
        self,
        provider_batch_id: str,
        total_amount: Decimal,
        employee_count: int,
        items: Optional[list[dict[str, Any]]] = None,
    ) -> ProviderBatchResult:
        payload = {
            "batch_id": provider_batch_id,
            "total_amount": str(total_amount),
            "employee_count": employee_count,
            "items": items or [],
        }
        data = await self._request(
            "POST", "/batches", reference=provider_batch_id, json=payload,
        )
        reference = data.get("reference")
        if not reference:
            raise DisbursementProviderException(
                "Disbursement provider response has no batch reference.",
                reference=provider_batch_id,
            )
        return ProviderBatchResult(
            reference=reference,
            status=_parse_status(data.get("status", ProviderStatus.processing.value)),
            raw=data,
        )

    async def get_batch_status(self, reference: str) -> ProviderBatchResult:
        data = await self._request("GET", f"/batches/{reference}", reference=reference)
        return ProviderBatchResult(
            reference=data.get("reference", reference),
            status=_parse_status(data.get("status")),
            raw=data,
        )


# ── Local stand-in ──────────────────────────────────────────────────

class SimulatedDisbursementProvider:
    """In-memory provider for environments without a provider URL."""

    def __init__(self, prefix: str = "FLASH") -> None:
        self.prefix = prefix
        self._batches: dict[str, ProviderStatus] = {}

    async def submit_batch(
        self,
        provider_batch_id: str,
        total_amount: Decimal,
        employee_count: int,
        items: Optional[list[dict[str, Any]]] = None,
    ) -> ProviderBatchResult:
        reference = f"{self.prefix}-{int(time.time() * 1000)}"
        self._batches[reference] = ProviderStatus.processing
        logger.info(
            "Simulated disbursement %s: batch=%s total=%s employees=%d",
            reference, provider_batch_id, total_amount, employee_count,
        )
        return ProviderBatchResult(
            reference=reference,
            status=ProviderStatus.processing,
            raw={
                "success": True,
                "reference": reference,
                "batch_id": provider_batch_id,
                "total_amount": str(total_amount),
                "employee_count": employee_count,
                "status": ProviderStatus.processing.value,
                "simulated": True,
            },
        )

    async def get_batch_status(self, reference: str) -> ProviderBatchResult:
        status = self._batches.get(reference, ProviderStatus.processing)
        return ProviderBatchResult(
            reference=reference,
            status=status,
            raw={"reference": reference, "status": status.value, "simulated": True},
        )


_simulated_provider = SimulatedDisbursementProvider(settings.DISBURSEMENT_REFERENCE_PREFIX)


def get_disbursement_provider():
    """FastAPI dependency: the configured disbursement provider."""
    if not settings.DISBURSEMENT_PROVIDER_URL:
        return _simulated_provider
    return HttpDisbursementProvider(
        settings.DISBURSEMENT_PROVIDER_URL,
        api_key=settings.DISBURSEMENT_API_KEY,
        timeout=settings.DISBURSEMENT_TIMEOUT_SECONDS,
    )
