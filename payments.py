"""
Stripe payments through the official SDK.

Every call passes the secret key explicitly so an unset key answers 503
instead of reaching Stripe. SDK objects are handed to the routes as plain
dicts.
"""

import json
import logging
from typing import Optional

import stripe

from settings import get_settings

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE = 300


class PaymentError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _api_key() -> str:
    key = get_settings().stripe_secret_key
    if not key:
        raise PaymentError("Payments are not configured", 503)
    return key


def _call(fn, *args, **kwargs) -> dict:
    try:
        return fn(*args, api_key=_api_key(), **kwargs).to_dict()
    except stripe.APIConnectionError as exc:
        logger.error("Stripe unreachable: %s", exc)
        raise PaymentError("Payment provider unavailable")
    except stripe.StripeError as exc:
        status = exc.http_status or 502
        message = exc.user_message or "Payment provider error"
        logger.error("Stripe returned %s: %s", status, message)
        raise PaymentError(message, 400 if status < 500 else 502)


def create_payment_intent(amount: float, currency: str = "usd", user_id: str = "", order_id: str = "") -> dict:
    intent = _call(
        stripe.PaymentIntent.create,
        amount=int(round(amount * 100)),
        currency=currency.lower(),
        metadata={"user_id": user_id, "order_id": order_id or ""},
        automatic_payment_methods={"enabled": True},
    )
    logger.info("Payment intent %s created for user %s (%.2f %s)", intent.get("id"), user_id, amount, currency)
    return intent


def retrieve_payment_intent(intent_id: str) -> dict:
    return _call(stripe.PaymentIntent.retrieve, intent_id)


def refund_payment_intent(intent_id: str, amount: Optional[float] = None) -> dict:
    params = {"payment_intent": intent_id}
    if amount is not None:
        params["amount"] = int(round(amount * 100))
    refund = _call(stripe.Refund.create, **params)
    logger.info("Refund %s issued for %s", refund.get("id"), intent_id)
    return refund


def construct_event(payload: bytes, signature_header: Optional[str], secret: Optional[str] = None,
                    tolerance: int = SIGNATURE_TOLERANCE) -> dict:
    """Verify a `Stripe-Signature` header and return the decoded event."""
    secret = secret or get_settings().stripe_webhook_secret
    if not secret:
        raise PaymentError("Webhook secret is not configured", 503)
    if not signature_header:
        raise PaymentError("Missing signature", 400)
    try:
        stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Rejected webhook: %s", exc)
        raise PaymentError("Invalid signature", 400)
    except ValueError:
        raise PaymentError("Invalid payload", 400)
    return json.loads(payload)
