"""
Payment gateway clients

Thin wrappers over the razorpay and stripe SDKs. Each client is built once at
startup from settings and injected into the services, so tests can hand in a
fake SDK client instead of patching module globals.

The SDKs are blocking; every remote call runs in a worker thread under the
configured gateway timeout, and any SDK failure or timeout surfaces as
GatewayError (RefundError for refunds).
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import razorpay
import stripe
from razorpay.errors import SignatureVerificationError

from ..core.exceptions import GatewayError, RefundError, SignatureError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class GatewaySession:
    """Remote payment session opened for an order"""
    gateway: str
    session_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    refund_id: str
    amount: int
    status: str
    notes: Dict[str, Any] = field(default_factory=dict)


async def _call_gateway(fn: Callable[[], Any], timeout: float, error_cls=GatewayError, operation: str = "call"):
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Payment gateway {operation} timed out after {timeout}s")
        raise error_cls(f"Payment gateway timed out during {operation}", {"timeout_seconds": timeout})
    except Exception as e:
        logger.error(f"Payment gateway {operation} failed: {e}")
        raise error_cls(f"Payment gateway {operation} failed", {"reason": str(e)})


# =============================================================================
# Razorpay
# =============================================================================

class RazorpayGateway:
    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client=None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    @classmethod
    def from_settings(cls, settings, client=None) -> "RazorpayGateway":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
            client=client,
        )

    @property
    def webhook_signing_secret(self) -> str:
        return self.webhook_secret or self.key_secret

    async def create_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, str]) -> GatewaySession:
        """
        Open a Razorpay order.

        Args:
            amount: Amount in paise
            currency: ISO currency code
            receipt: Our order number
            notes: Echoed back on every payment and webhook for this order
        """
        payment_data = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": notes,
        }
        response = await _call_gateway(
            lambda: self.client.order.create(data=payment_data),
            self.timeout_seconds,
            operation="order creation",
        )
        return GatewaySession(
            gateway=self.name,
            session_id=response["id"],
            amount=int(response.get("amount", amount)),
            currency=response.get("currency", currency),
            receipt=response.get("receipt", receipt),
            raw=response,
        )

    async def refund(self, payment_id: str, amount: Optional[int], notes: Dict[str, Any]) -> GatewayRefund:
        data = {"notes": notes}
        if amount is not None:
            data["amount"] = amount

        response = await _call_gateway(
            lambda: self.client.payment.refund(payment_id, data),
            self.timeout_seconds,
            error_cls=RefundError,
            operation="refund",
        )
        return GatewayRefund(
            refund_id=response["id"],
            amount=int(response.get("amount", amount or 0)),
            status=response.get("status", "processed"),
            notes=dict(response.get("notes") or notes),
        )

    def verify_payment_signature(self, gateway_order_ref: str, gateway_payment_ref: str,
                                 signature: Optional[str]) -> bool:
        """
        Check the checkout signature HMAC-SHA256(key_secret, "<order_id>|<payment_id>").

        The SDK signs with the client's key secret, never the webhook secret.
        """
        if not signature or not signature.isascii():
            return False

        params_dict = {
            "razorpay_order_id": gateway_order_ref,
            "razorpay_payment_id": gateway_payment_ref,
            "razorpay_signature": signature,
        }
        try:
            self.client.utility.verify_payment_signature(params_dict)
        except SignatureVerificationError:
            return False
        return True

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check X-Razorpay-Signature over the exact bytes received, before any JSON parsing"""
        if not signature or not signature.isascii():
            return False

        try:
            body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return False

        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_signing_secret)
        except SignatureVerificationError:
            return False
        return True


# =============================================================================
# Stripe
# =============================================================================

class StripeGateway:
    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        publishable_key: str,
        webhook_secret: str,
        client_url: str,
        timeout_seconds: float = 10.0,
        sdk=stripe,
    ):
        self.secret_key = secret_key
        self.publishable_key = publishable_key
        self.webhook_secret = webhook_secret
        self.client_url = client_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.sdk = sdk

    @classmethod
    def from_settings(cls, settings, sdk=stripe) -> "StripeGateway":
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            client_url=settings.CLIENT_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
            sdk=sdk,
        )

    async def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> GatewaySession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": f"{self.client_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.client_url}/payment/cancel",
            "api_key": self.secret_key,
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = await _call_gateway(
            lambda: self.sdk.checkout.Session.create(**params),
            self.timeout_seconds,
            operation="checkout session creation",
        )
        amount = sum(
            int(item["price_data"]["unit_amount"]) * int(item["quantity"])
            for item in line_items
        )
        return GatewaySession(
            gateway=self.name,
            session_id=session["id"],
            amount=amount,
            currency=line_items[0]["price_data"]["currency"] if line_items else "inr",
            url=session["url"],
        )

    def construct_event(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header and decode the event.

        Raises:
            SignatureError: header missing or not valid for the body
            ValidationError: body is not a JSON object
        """
        if not signature:
            raise SignatureError("Missing Stripe-Signature header")

        payload = raw_body.decode("utf-8", errors="replace")
        try:
            self.sdk.WebhookSignature.verify_header(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            raise SignatureError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        return event
