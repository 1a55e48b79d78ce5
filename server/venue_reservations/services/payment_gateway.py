"""Outbound invoice generation against the payment gateway."""

import logging
import secrets
import string
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..core.config import Settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The gateway rejected the invoice or could not be reached."""


class InvoicePayload(BaseModel):
    """Body submitted to the gateway when an invoice is generated."""

    type: str = Field(..., description="Resource kind being paid for")
    amount: int = Field(..., ge=0, description="Amount in minor units")
    consumer_info: Dict[str, Any]
    booking_data: Dict[str, Any]


class GatewayInvoice(BaseModel):
    """Gateway acknowledgement of an invoice."""

    consumer_number: str = Field(..., description="Number the member pays against")


def generate_reference(prefix: str, length: int = 9) -> str:
    """Generate a random upper-case reference such as INV-4K2J9QX1A."""
    alphabet = string.ascii_uppercase + string.digits
    return f"{prefix}-" + "".join(secrets.choice(alphabet) for _ in range(length))


class PaymentGateway(ABC):
    """Payment gateway the invoice flow submits to."""

    @abstractmethod
    async def create_invoice(self, payload: InvoicePayload) -> GatewayInvoice:
        """
        Register an invoice with the gateway.

        Raises:
            GatewayError: If the gateway fails
        """

    async def aclose(self) -> None:
        return None


class MockPaymentGateway(PaymentGateway):
    """In-process gateway that accepts every invoice unless told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.submitted: List[InvoicePayload] = []

    async def create_invoice(self, payload: InvoicePayload) -> GatewayInvoice:
        if self.fail:
            raise GatewayError("Mock gateway configured to fail")

        self.submitted.append(payload)
        return GatewayInvoice(consumer_number=generate_reference("CN", length=10))


class HttpPaymentGateway(PaymentGateway):
    """Gateway reached over HTTP at a single invoice endpoint."""

    def __init__(self, url: str, timeout_seconds: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def create_invoice(self, payload: InvoicePayload) -> GatewayInvoice:
        try:
            response = await self.client.post(self.url, json=payload.model_dump(mode="json"))
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Payment gateway request failed",
                extra={"gateway_url": self.url, "error": str(e)},
            )
            raise GatewayError(str(e)) from e

        consumer_number = data.get("consumer_number") or data.get("ConsumerNumber")
        if not consumer_number:
            raise GatewayError("Gateway response did not include a consumer number")

        return GatewayInvoice(consumer_number=consumer_number)

    async def aclose(self) -> None:
        await self.client.aclose()


def create_payment_gateway(settings: Settings) -> PaymentGateway:
    """HTTP gateway when a URL is configured, otherwise the mock."""
    if settings.payment_gateway_url:
        return HttpPaymentGateway(settings.payment_gateway_url, settings.payment_gateway_timeout_seconds)

    if settings.is_production:
        logger.warning("PAYMENT_GATEWAY_URL is not set; invoices go to the mock gateway")
    return MockPaymentGateway()
