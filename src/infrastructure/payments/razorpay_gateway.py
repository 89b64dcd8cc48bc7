import logging
import os

import razorpay

logger = logging.getLogger(__name__)


class GatewayNotConfigured(RuntimeError):
    """Razorpay keys are missing from the environment."""


# Raised by the SDK for API-level failures; network failures surface as
# requests exceptions, which are OSError subclasses.
GATEWAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    OSError,
)


class RazorpayGateway:
    """Server-side half of the Razorpay checkout: orders and signature checks."""

    def __init__(self, key_id: str, key_secret: str):
        self.key_id = key_id
        self.client = razorpay.Client(auth=(key_id, key_secret))

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        key_id = os.getenv("RAZORPAY_KEY_ID")
        key_secret = os.getenv("RAZORPAY_KEY_SECRET")
        if not key_id or not key_secret:
            raise GatewayNotConfigured("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")
        return cls(key_id, key_secret)

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> str:
        order = self.client.order.create(
            {
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes,
                "payment_capture": 1,
            }
        )
        logger.info("Razorpay order %s created for receipt %s", order["id"], receipt)
        return order["id"]

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": gateway_order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning(
                "Signature verification failed for payment %s order %s",
                payment_id,
                gateway_order_id,
            )
            return False
        return True
