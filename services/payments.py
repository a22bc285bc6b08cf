import logging
from typing import NamedTuple, Optional, Protocol

import stripe

from services.errors import PaymentDeclined, RefundError, TransientPaymentError

logger = logging.getLogger(__name__)


class ChargeResult(NamedTuple):
    success: bool
    transaction_id: Optional[str] = None


class RefundResult(NamedTuple):
    success: bool
    refund_id: Optional[str] = None


class PaymentGateway(Protocol):
    def charge(self, user_id: str, amount: int, method: str, idempotency_key: Optional[str] = None) -> ChargeResult:
        """Raise TransientPaymentError for retryable failures, PaymentDeclined for permanent ones."""

    def refund(self, transaction_id: str) -> RefundResult: ...


class StripePaymentGateway:
    """Charges saved payment methods off-session through Stripe PaymentIntents."""

    def __init__(self, api_key: str, currency: str = "INR"):
        self.api_key = api_key
        self.currency = currency.lower()

    def charge(self, user_id: str, amount: int, method: str, idempotency_key: Optional[str] = None) -> ChargeResult:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,  # smallest unit
                currency=self.currency,
                payment_method=method,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"user_id": str(user_id)},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as exc:
            raise PaymentDeclined(exc.user_message or "Card declined", code="CardDeclined",
                                  details={"decline_code": getattr(exc, "code", None)}) from exc
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            raise TransientPaymentError("Payment provider unavailable, please retry",
                                        details={"provider_error": type(exc).__name__}) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe rejected charge for user %s: %s", user_id, exc)
            raise PaymentDeclined("Payment could not be processed", code="PaymentRejected",
                                  details={"provider_error": type(exc).__name__}) from exc

        if intent["status"] != "succeeded":
            raise PaymentDeclined("Payment was not completed", code="PaymentIncomplete",
                                  details={"intent_status": intent["status"]})
        return ChargeResult(True, intent["id"])

    def refund(self, transaction_id: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=transaction_id,
                idempotency_key=f"refund-{transaction_id}",
            )
        except stripe.StripeError as exc:
            raise RefundError("Refund could not be issued",
                              details={"transaction_id": transaction_id, "provider_error": type(exc).__name__}) from exc
        return RefundResult(refund["status"] in ("succeeded", "pending"), refund["id"])
