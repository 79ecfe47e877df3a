"""Paystack API client."""
import hashlib
import hmac
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

import httpx

from digipay.domain.common.errors import ExternalServiceError
from digipay.domain.common.money import Currency, amount_from_minor, amount_to_minor
from digipay.domain.wallet.models import BankAccount, PaymentInit, PaymentVerification, TransferInit
from digipay.settings import settings

logger = logging.getLogger(__name__)


def compute_signature(secret_key: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA512 of the raw webhook body, as sent in x-paystack-signature."""
    return hmac.new(secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def _log_connection_error(operation: str, url: str, e: Exception) -> None:
    if isinstance(e, httpx.ConnectError):
        logger.error("Paystack unreachable at %s during %s (%s)", url, operation, e)
    else:
        logger.error(f"Paystack {operation} failed: {e}")


def _parse_paid_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


class PaystackClient:
    """Client for the Paystack REST API. Amounts cross the wire in kobo."""

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        callback_url: str = None,
        timeout: float = None,
    ):
        self.secret_key = secret_key or settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.callback_url = callback_url or settings.paystack_callback_url
        self.timeout = timeout or settings.paystack_timeout_seconds

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, operation: str, method: str, path: str, json: dict = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self._headers(), json=json)
                response.raise_for_status()
                body = response.json()
        except httpx.ConnectError as e:
            _log_connection_error(operation, url, e)
            raise ExternalServiceError("paystack", f"{operation} failed: service unreachable")
        except httpx.HTTPError as e:
            _log_connection_error(operation, url, e)
            raise ExternalServiceError("paystack", f"{operation} failed")
        except ValueError as e:
            logger.error(f"Paystack {operation} returned invalid JSON: {e}")
            raise ExternalServiceError("paystack", f"{operation} returned an invalid response")
        if not body.get("status"):
            logger.error(f"Paystack {operation} rejected: {body.get('message')}")
            raise ExternalServiceError("paystack", body.get("message") or f"{operation} rejected")
        return body.get("data") or {}

    async def initialize_payment(self, email: str, amount: Decimal, reference: str) -> PaymentInit:
        """Start a checkout for a NGN charge."""
        payload = {
            "email": email,
            "amount": amount_to_minor(amount, Currency.NGN),
            "reference": reference,
            "currency": Currency.NGN.value,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        data = await self._request("initialize", "POST", "/transaction/initialize", json=payload)
        logger.info(f"Paystack checkout initialized: {reference}")
        return PaymentInit(
            reference=data.get("reference", reference),
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code"),
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """Look up a charge by reference."""
        data = await self._request("verify", "GET", f"/transaction/verify/{reference}")
        return PaymentVerification(
            reference=data.get("reference", reference),
            status=data.get("status", "pending"),
            amount=amount_from_minor(int(data.get("amount") or 0), Currency.NGN),
            currency=data.get("currency") or Currency.NGN.value,
            paid_at=_parse_paid_at(data.get("paid_at")),
        )

    async def initiate_transfer(
        self, amount: Decimal, account: BankAccount, reference: str, reason: str
    ) -> TransferInit:
        """Create a transfer recipient for the account, then send the payout."""
        recipient = await self._request(
            "create recipient",
            "POST",
            "/transferrecipient",
            json={
                "type": "nuban",
                "name": account.account_name,
                "account_number": account.account_number,
                "bank_code": account.bank_code,
                "currency": Currency.NGN.value,
            },
        )
        data = await self._request(
            "transfer",
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": amount_to_minor(amount, Currency.NGN),
                "recipient": recipient["recipient_code"],
                "reason": reason,
                "reference": reference,
            },
        )
        logger.info(f"Paystack transfer queued: {reference} ({data.get('status')})")
        return TransferInit(
            reference=data.get("reference", reference),
            transfer_code=data.get("transfer_code"),
            status=data.get("status", "pending"),
        )

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature or not self.secret_key:
            return False
        return hmac.compare_digest(compute_signature(self.secret_key, raw_body), signature)
