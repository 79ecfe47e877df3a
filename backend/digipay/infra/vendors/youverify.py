"""YouVerify identity (BVN) client."""
import logging

import httpx

from digipay.domain.common.errors import ExternalServiceError
from digipay.domain.users.services import IdentityCheck
from digipay.settings import settings

logger = logging.getLogger(__name__)


class YouVerifyClient:
    """Client for YouVerify BVN lookups."""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: float = None):
        self.api_key = api_key or settings.kyc_api_key
        self.base_url = (base_url or settings.kyc_base_url).rstrip("/")
        self.timeout = timeout or settings.kyc_timeout_seconds

    async def verify_identity(self, identity_number: str, first_name: str, last_name: str) -> IdentityCheck:
        """
        Verify a BVN and compare the registered name.

        Returns:
            IdentityCheck: verified only when the provider finds the BVN and both names match
        """
        url = f"{self.base_url}/identity/ng/bvn"
        headers = {"Token": self.api_key, "Content-Type": "application/json"}
        payload = {
            "id": identity_number,
            "firstName": first_name,
            "lastName": last_name,
            "isSubjectConsent": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
                result = response.json()
        except httpx.ConnectError as e:
            logger.error("YouVerify unreachable at %s (%s)", url, e)
            raise ExternalServiceError("youverify", "identity service unreachable")
        except httpx.HTTPError as e:
            logger.error(f"YouVerify lookup failed: {e}")
            raise ExternalServiceError("youverify", "identity lookup failed")
        except ValueError as e:
            logger.error(f"YouVerify returned invalid JSON: {e}")
            raise ExternalServiceError("youverify", "identity lookup returned an invalid response")

        if not result.get("success"):
            return IdentityCheck(verified=False, reason=result.get("message") or "Identity not found")
        data = result.get("data") or {}
        if data.get("status") and str(data["status"]).lower() not in ("found", "verified"):
            return IdentityCheck(verified=False, reference=data.get("id"), reason=f"Status {data['status']}")
        registered_first = (data.get("firstName") or "").strip().lower()
        registered_last = (data.get("lastName") or "").strip().lower()
        if registered_first != first_name.strip().lower() or registered_last != last_name.strip().lower():
            return IdentityCheck(verified=False, reference=data.get("id"), reason="Name mismatch")
        return IdentityCheck(verified=True, reference=data.get("id"))
