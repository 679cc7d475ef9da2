"""Client for the hosted-checkout payment processor (Midtrans Snap)."""
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from storefront.config import Settings
from storefront.errors import GatewayError
from storefront.monitoring import payment_gateway_duration_histogram

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """Token and hosted page URL for one checkout attempt."""
    token: str
    redirect_url: Optional[str]


class PaymentGatewayClient:
    """Client for creating checkout sessions with the payment processor."""

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        """
        Initialize payment gateway client.

        Args:
            http_client: Async HTTP client
            settings: Service settings (server key, environment, frontend URL)
        """
        self.http_client = http_client
        self.settings = settings

    async def create_transaction(
        self,
        external_id: str,
        order_id: str,
        amount: float,
        customer_name: str,
        customer_email: str,
        customer_phone: Optional[str] = ""
    ) -> CheckoutSession:
        """
        Open a hosted checkout session.

        Args:
            external_id: Transaction id sent to the processor
            order_id: Local order id, used for the finish redirect
            amount: Gross amount (sent as an integer)
            customer_name: Purchaser display name
            customer_email: Purchaser email
            customer_phone: Purchaser phone

        Returns:
            The processor's session token and redirect URL

        Raises:
            GatewayError: If the processor is unreachable, rejects the request
                or answers without a token
        """
        payload = {
            "transaction_details": {
                "order_id": external_id,
                "gross_amount": int(amount),
            },
            "customer_details": {
                "first_name": customer_name,
                "email": customer_email,
                "phone": customer_phone or "",
            },
            "callbacks": {
                "finish": f"{self.settings.frontend_url}/orders/{order_id}",
            },
        }

        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.post(
                self.settings.snap_url,
                json=payload,
                auth=(self.settings.midtrans_server_key, ""),
                headers={"Accept": "application/json"},
            )
            status_code = response.status_code

            if response.status_code >= 400:
                status = "error"
                logger.error("Payment gateway rejected transaction", extra={
                    "external_id": external_id,
                    "status_code": response.status_code,
                    "body": response.text[:500]
                })
                raise GatewayError("Payment gateway rejected the transaction")

            try:
                body = response.json()
            except ValueError:
                status = "error"
                logger.error("Payment gateway returned a non-JSON body", extra={
                    "external_id": external_id,
                    "status_code": response.status_code,
                    "body": response.text[:500]
                })
                raise GatewayError("Invalid response from payment gateway")

            token = body.get("token") if isinstance(body, dict) else None
            if not token:
                status = "error"
                logger.error("Payment gateway response has no token", extra={
                    "external_id": external_id,
                    "status_code": response.status_code,
                    "error_messages": body.get("error_messages") if isinstance(body, dict) else None
                })
                raise GatewayError("Payment gateway did not return a token")

            return CheckoutSession(token=token, redirect_url=body.get("redirect_url"))
        except httpx.TimeoutException as e:
            status = "timeout"
            status_code = 0
            logger.error("Payment gateway timed out", extra={
                "external_id": external_id,
                "error": str(e)
            })
            raise GatewayError("Payment gateway timed out", retryable=True)
        except httpx.HTTPError as e:
            status = "error"
            status_code = 0  # Connection failure
            logger.error("Failed to reach payment gateway", extra={
                "external_id": external_id,
                "error": str(e)
            })
            raise GatewayError("Payment gateway unavailable", retryable=True)
        finally:
            duration = time.time() - start_time
            payment_gateway_duration_histogram.record(
                duration,
                {
                    "operation": "create_transaction",
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )
