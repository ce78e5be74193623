"""Escrow ledger adapter.

The payment service owns the money; the dispute engine only asks how much is
held and instructs transfers and fees.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import uuid

import httpx

from disputeflow.config import settings
from disputeflow.core.exceptions import InsufficientEscrow, LedgerUnavailable
from disputeflow.core.logging import log
from disputeflow.disputes.money import check_split


@dataclass(frozen=True)
class TransferReceipt:
    reference: str
    booking_id: uuid.UUID
    customer_percent: int
    vendor_percent: int


@dataclass(frozen=True)
class FeeReceipt:
    reference: str
    user_id: uuid.UUID
    amount: Decimal
    currency: str


class EscrowLedger(ABC):
    """Escrow operations consumed by the state machine."""

    @abstractmethod
    async def get_held_amount(self, booking_id: uuid.UUID) -> Decimal:
        """Amount currently held in escrow for the booking."""

    async def transfer(
        self,
        booking_id: uuid.UUID,
        customer_percent: int,
        vendor_percent: int,
        *,
        idempotency_key: str,
    ) -> TransferReceipt:
        """Release the escrow split between the parties.

        Refuses any split that does not add up to 100 before touching funds.
        """
        check_split(customer_percent, vendor_percent)
        return await self._transfer(booking_id, customer_percent, vendor_percent, idempotency_key)

    @abstractmethod
    async def _transfer(
        self,
        booking_id: uuid.UUID,
        customer_percent: int,
        vendor_percent: int,
        idempotency_key: str,
    ) -> TransferReceipt:
        ...

    @abstractmethod
    async def charge_fee(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        *,
        idempotency_key: str,
    ) -> FeeReceipt:
        """Charge a platform fee to a user."""


class HttpEscrowLedger(EscrowLedger):
    """Ledger backed by the payment service's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.ESCROW_LEDGER_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.get("ESCROW_LEDGER_API_KEY", "")
        self.timeout = timeout or settings.get("ESCROW_LEDGER_TIMEOUT_SECONDS", 15)
        self._client = client

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                return await self._client.request(method, url, timeout=self.timeout, **kwargs)
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            log.warning(f"Escrow ledger {method} {path} failed: {e}")
            raise LedgerUnavailable(str(e)) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, booking_id: uuid.UUID | None = None) -> None:
        if response.status_code < 400:
            return
        if response.status_code in (402, 409) and booking_id is not None:
            raise InsufficientEscrow(booking_id, response.text or "insufficient funds held in escrow")
        raise LedgerUnavailable(f"HTTP {response.status_code}: {response.text}")

    async def get_held_amount(self, booking_id: uuid.UUID) -> Decimal:
        response = await self._request("GET", f"/escrow/{booking_id}", headers=self._headers())
        self._raise_for_status(response)
        try:
            return Decimal(str(response.json()["held_amount"]))
        except (KeyError, ValueError, InvalidOperation) as e:
            raise LedgerUnavailable(f"unreadable escrow balance: {e}") from e

    async def _transfer(
        self,
        booking_id: uuid.UUID,
        customer_percent: int,
        vendor_percent: int,
        idempotency_key: str,
    ) -> TransferReceipt:
        response = await self._request(
            "POST",
            f"/escrow/{booking_id}/transfers",
            json={"customer_percent": customer_percent, "vendor_percent": vendor_percent},
            headers=self._headers(idempotency_key),
        )
        self._raise_for_status(response, booking_id)
        reference = response.json().get("reference", idempotency_key)
        log.info(
            f"Escrow transfer {reference} for booking {booking_id}: "
            f"customer {customer_percent}% / vendor {vendor_percent}%"
        )
        return TransferReceipt(reference, booking_id, customer_percent, vendor_percent)

    async def charge_fee(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        *,
        idempotency_key: str,
    ) -> FeeReceipt:
        response = await self._request(
            "POST",
            "/fees",
            json={"user_id": str(user_id), "amount": str(amount), "currency": currency},
            headers=self._headers(idempotency_key),
        )
        self._raise_for_status(response)
        reference = response.json().get("reference", idempotency_key)
        log.info(f"Charged fee {reference}: {amount} {currency} to user {user_id}")
        return FeeReceipt(reference, user_id, amount, currency)
