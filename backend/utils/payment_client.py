# backend/utils/payment_client.py
import httpx
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from urllib.parse import urljoin

from config import settings
from utils.errors import PaymentCaptureError
from utils.money import money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    payment_id: str
    amount: Decimal


class PaymentClient:
    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        # Initialize gateway configuration; transport is swapped out in tests
        self.api_url = api_url or settings.PAYMENT_API_URL
        self.api_key = api_key if api_key is not None else settings.PAYMENT_API_KEY
        self.currency = settings.PAYMENT_CURRENCY
        self.timeout = settings.PAYMENT_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def capture(self, amount: Decimal, payment_method_ref: str, *, customer_id: int,
                      description: str = "", metadata: Optional[dict] = None) -> PaymentResult:
        """Charge a stored payment method once. Raises PaymentCaptureError on any failure."""
        capture_url = urljoin(self.api_url, "/v1/captures")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        amount = money(amount)
        payload = {
            # Gateway works in minor units
            "amount": int(amount * 100),
            "currency": self.currency,
            "payment_method": payment_method_ref,
            "customer_id": str(customer_id),
            "description": description,
            "metadata": metadata or {},
        }
        async with self._client() as client:
            try:
                response = await client.post(capture_url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                try:
                    resp_text = e.response.text if getattr(e, "response", None) is not None else str(e)
                except Exception:
                    resp_text = str(e)
                logger.error("Payment capture error: %s", resp_text)
                raise PaymentCaptureError("Payment gateway unavailable or rejected the request") from e
            except ValueError as e:
                logger.error("Payment gateway returned a non-JSON body")
                raise PaymentCaptureError("Payment gateway returned an invalid response") from e

        payment_id = data.get("payment_id") or data.get("paymentIntentId")
        if not data.get("success") or not payment_id:
            logger.warning("Payment declined for customer %s: %s", customer_id, data.get("error"))
            raise PaymentCaptureError(data.get("error") or "Payment failed")

        logger.info("Captured %s %s for customer %s (payment %s)", amount, self.currency, customer_id, payment_id)
        return PaymentResult(payment_id=payment_id, amount=amount)


payment_client = PaymentClient()


def get_payment_client() -> PaymentClient:
    return payment_client
