from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog

from .errors import GatewayUnavailableError
from .models import GatewayTransaction

logger = structlog.get_logger(__name__)

# Paystack reports amounts in the currency subunit (kobo, pesewas, cents)
SUBUNITS_PER_UNIT = Decimal("100")

# replies that say something about the reference itself; any other error
# status (429, 5xx, ...) is the gateway's problem
UNVERIFIED_STATUS_CODES = (400, 404)


class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {secret_key}"}

    def verify_transaction(self, reference: str) -> GatewayTransaction:
        url = f"{self.base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            response = self.client.get(url, headers=self._headers)
        except httpx.HTTPError as e:
            logger.warning("gateway_request_failed", reference=reference, error=str(e))
            raise GatewayUnavailableError(f"Could not reach payment gateway: {e}") from e

        if response.status_code in (401, 403):
            logger.error("gateway_auth_rejected", reference=reference, status_code=response.status_code)
            raise GatewayUnavailableError(f"Payment gateway rejected our credentials (HTTP {response.status_code})")

        if response.is_error and response.status_code not in UNVERIFIED_STATUS_CODES:
            logger.warning("gateway_server_error", reference=reference, status_code=response.status_code)
            raise GatewayUnavailableError(f"Payment gateway returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayUnavailableError("Payment gateway returned an unreadable response") from e

        data = body.get("data") if isinstance(body, dict) else None
        if response.is_error or not isinstance(data, dict):
            # Unknown references come back as 4xx with status=false and no data
            message = body.get("message") if isinstance(body, dict) else None
            logger.info(
                "gateway_transaction_unverified",
                reference=reference,
                status_code=response.status_code,
                gateway_message=message,
            )
            return GatewayTransaction(
                reference=reference,
                status="not_found" if response.status_code == 404 else "unverified",
                raw_payload=body if isinstance(body, dict) else {},
            )

        return GatewayTransaction(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or "unknown"),
            amount=_to_units(data.get("amount")),
            currency=data.get("currency"),
            raw_payload=data,
        )

    def close(self) -> None:
        self.client.close()


def _to_units(amount: Any) -> Decimal:
    if amount is None:
        return Decimal("0.00")
    try:
        return (Decimal(str(amount)) / SUBUNITS_PER_UNIT).quantize(Decimal("0.01"))
    except InvalidOperation:
        return Decimal("0.00")
