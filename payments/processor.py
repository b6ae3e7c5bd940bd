"""
Thin wrapper over the Stripe API.

Everything the settlement core asks of the payment processor goes through
here so that every Stripe failure surfaces as ExternalProcessorError with
the call context attached.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

import stripe
from django.conf import settings
from django.utils import timezone

from commissions.exceptions import ExternalProcessorError
from commissions.pricing import to_minor_units

logger = logging.getLogger(__name__)


stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


@dataclass
class PaymentStatus:
    payment_intent_id: str
    status: str
    captured: bool


@dataclass
class BalanceSnapshot:
    available: int
    pending: int
    currency: str


def _call(operation, func, **params):
    try:
        return func(**params)
    except stripe.StripeError as e:
        logger.error(f"Stripe {operation} failed: {e}")
        raise ExternalProcessorError(
            f"Stripe {operation} failed: {e.user_message or str(e)}",
            operation=operation,
        ) from e


def _to_dict(obj):
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


def _stringify(metadata):
    # Stripe metadata values must be strings
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}


def create_checkout_session(*, amount, name, description, metadata, success_url, cancel_url):
    metadata = _stringify(metadata)
    return _call(
        "checkout session create",
        stripe.checkout.Session.create,
        mode="payment",
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": settings.STRIPE_CURRENCY,
                    "product_data": {"name": name, "description": description[:500] or name},
                    "unit_amount": to_minor_units(amount),
                },
                "quantity": 1,
            }
        ],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
    )


def list_recent_checkout_sessions(minutes):
    """Yield checkout sessions created in the last ``minutes`` minutes, as plain dicts."""
    since = int((timezone.now() - timedelta(minutes=minutes)).timestamp())
    sessions = _call(
        "checkout session list",
        stripe.checkout.Session.list,
        limit=100,
        created={"gte": since},
    )
    try:
        for session in sessions.auto_paging_iter():
            yield _to_dict(session)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout session paging failed: {e}")
        raise ExternalProcessorError(f"Stripe checkout session list failed: {e}") from e


def retrieve_payment(payment_intent_id):
    intent = _call("payment intent retrieve", stripe.PaymentIntent.retrieve, id=payment_intent_id)
    status = intent.get("status")
    captured = status == "succeeded" and (intent.get("amount_received") or 0) > 0
    return PaymentStatus(payment_intent_id=payment_intent_id, status=status, captured=captured)


def create_refund(payment_intent_id, *, metadata=None, idempotency_key=None):
    params = {
        "payment_intent": payment_intent_id,
        "reason": "requested_by_customer",
        "metadata": _stringify(metadata),
    }
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return _call("refund create", stripe.Refund.create, **params)


def retrieve_balance(currency=None):
    currency = (currency or settings.STRIPE_CURRENCY).lower()
    balance = _call("balance retrieve", stripe.Balance.retrieve)

    def _amount(entries):
        return sum(e.get("amount", 0) for e in (entries or []) if e.get("currency") == currency)

    return BalanceSnapshot(
        available=_amount(balance.get("available")),
        pending=_amount(balance.get("pending")),
        currency=currency,
    )


def create_transfer(*, amount, destination, description="", metadata=None,
                    transfer_group=None, idempotency_key=None):
    params = {
        "amount": amount,
        "currency": settings.STRIPE_CURRENCY,
        "destination": destination,
        "description": description,
        "metadata": _stringify(metadata),
    }
    if transfer_group:
        params["transfer_group"] = transfer_group
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    transfer = _call("transfer create", stripe.Transfer.create, **params)
    transfer_id = transfer.get("id") if transfer else None
    if not transfer_id:
        raise ExternalProcessorError("Stripe transfer create returned no transfer id")
    return transfer_id


def construct_webhook_event(payload, sig_header):
    """Raises ValueError or stripe.SignatureVerificationError on a bad payload."""
    return stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
