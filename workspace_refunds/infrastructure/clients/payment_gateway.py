"""Payment gateway HTTP client for issuing refunds against captured payments"""

import httpx
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict
from workspace_refunds.domain.exceptions import GatewayError
from workspace_refunds.config import settings
from workspace_refunds.infrastructure.observability.metrics import gateway_latency_histogram


class PaymentGatewayClient:
    """Client for the payment gateway refunds API (PayMongo-compatible)"""

    def __init__(self, base_url: str | None = None, secret_key: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.payment_gateway_base
        self.secret_key = secret_key if secret_key is not None else settings.payment_gateway_secret_key
        self.timeout = timeout or settings.http_timeout_seconds

    async def create_refund(self, payment_reference: str, amount: Decimal, reason: str, notes: str) -> Dict[str, Any]:
        """
        Refund part or all of a captured payment.

        Amounts are sent in minor units (centavos). Returns the gateway's
        refund resource, which always carries an "id".

        Raises:
            GatewayError: Missing credentials, timeout, HTTP errors, or invalid response
        """
        if not self.secret_key:
            raise GatewayError("Payment gateway secret key is not configured")

        payload = {
            "data": {
                "attributes": {
                    "amount": to_minor_units(amount),
                    "payment_id": payment_reference,
                    "reason": reason,
                    "notes": notes,
                }
            }
        }

        async with httpx.AsyncClient(timeout=self.timeout, auth=(self.secret_key, "")) as client:
            try:
                with gateway_latency_histogram.time():
                    response = await client.post(f"{self.base_url}/refunds", json=payload)
                response.raise_for_status()
                data = response.json().get("data")

                if not data or not data.get("id"):
                    raise GatewayError("Invalid response from payment gateway")
                return data

            except httpx.TimeoutException as e:
                raise GatewayError(f"Payment gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise GatewayError(f"Payment gateway error: {e.response.status_code} {_error_detail(e.response)}") from e
            except httpx.RequestError as e:
                raise GatewayError(f"Payment gateway unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise GatewayError(f"Invalid response from payment gateway: {e}") from e


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _error_detail(response: httpx.Response) -> str:
    """First error detail from a gateway error body, if any"""
    try:
        return response.json()["errors"][0]["detail"]
    except (ValueError, KeyError, IndexError, TypeError):
        return response.text[:200]
