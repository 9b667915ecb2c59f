"""
Payment capture.

RazorpayGateway opens a Razorpay order that the checkout widget completes;
the payment is settled once the checkout signature is verified. DemoGateway
captures immediately with a mock reference, for setups without keys.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import razorpay

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    success: bool
    payment_id: Optional[str] = None
    captured: bool = False
    receipt: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class DemoGateway:
    name = "demo"

    def initiate_payment(self, amount: float, currency: str = "INR", receipt: Optional[str] = None) -> PaymentResult:
        stamp = int(time.time() * 1000)
        payment_id = f"pay_mock_{stamp}"
        return PaymentResult(
            success=True,
            payment_id=payment_id,
            captured=True,
            receipt={
                "payment_id": payment_id,
                "order_id": f"order_mock_{stamp}",
                "status": "captured",
                "amount": amount,
                "currency": currency,
                "paid_at": datetime.now(timezone.utc).isoformat(),
            },
        )


class RazorpayGateway:
    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, client=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def initiate_payment(self, amount: float, currency: str = "INR", receipt: Optional[str] = None) -> PaymentResult:
        amount_paise = int(round(float(amount) * 100))
        receipt = receipt or f"rcpt_{int(datetime.now(timezone.utc).timestamp())}"
        try:
            r_order = self.client.order.create({
                "amount": amount_paise,
                "currency": currency,
                "receipt": receipt,
                "notes": {"local_order_id": receipt},
                "payment_capture": 1,
            })
        except Exception as ex:
            logger.error("Razorpay order creation failed: %s", ex)
            return PaymentResult(success=False, error=str(ex))
        return PaymentResult(
            success=True,
            captured=False,
            receipt={
                "id": r_order.get("id"),
                "amount": r_order.get("amount"),
                "currency": r_order.get("currency"),
                "receipt": r_order.get("receipt"),
                "key_id": self.key_id,
            },
        )

    def verify_signature(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
        msg = f"{razorpay_order_id}|{razorpay_payment_id}"
        expected = hmac.new(bytes(self.key_secret, "utf-8"), bytes(msg, "utf-8"), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


def get_gateway(settings):
    if settings.razorpay_key_id and settings.razorpay_key_secret:
        return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)
    logger.info("Razorpay keys not set; payments run in demo mode")
    return DemoGateway()
