"""
Stripe client - checkout sessions, refunds, Connect onboarding and transfers.

Wraps the Stripe SDK behind the PaymentProcessorPort so orchestrators never talk
to `stripe` directly and tests can swap in a fake processor.
"""
import json
import logging
from typing import Dict, Optional

import stripe

import config

logger = logging.getLogger(__name__)


class PaymentProcessorError(Exception):
    """Base exception for payment processor operations"""
    pass


class CheckoutFailed(PaymentProcessorError):
    """Raised when a checkout session cannot be created"""
    pass


class RefundFailed(PaymentProcessorError):
    """Raised when a refund is rejected by the processor"""
    pass


class TransferFailed(PaymentProcessorError):
    """Raised when a Connect transfer is rejected by the processor"""
    pass


class ConnectAccountFailed(PaymentProcessorError):
    """Raised when a Connect account or onboarding link cannot be created"""
    pass


class StripePaymentProcessor:
    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.STRIPE_SECRET_KEY
        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY not set - Stripe operations will fail")

    def create_checkout_session(
        self,
        *,
        amount_minor: int,
        currency: str,
        product_name: str,
        customer_email: Optional[str],
        success_url: str,
        cancel_url: str,
        metadata: dict,
        idempotency_key: str,
    ) -> Dict[str, str]:
        """
        Create a one-off Checkout Session for a game entry or rebuy.

        Returns:
            Dict with 'session_id' and 'url'

        Raises:
            CheckoutFailed: If Stripe rejects the request
        """
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": product_name},
                            "unit_amount": amount_minor,
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=customer_email,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            logger.error(f"Failed to create checkout session ({idempotency_key}): {str(e)}")
            raise CheckoutFailed(f"Failed to create checkout session: {str(e)}")

        logger.info(f"Created checkout session {session.id} for {idempotency_key}")
        return {"session_id": session.id, "url": session.url}

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        reason: str,
        metadata: dict,
        idempotency_key: str,
    ) -> Dict[str, str]:
        """
        Refund a payment intent in full.

        Raises:
            RefundFailed: If Stripe rejects the refund
        """
        try:
            refund = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=payment_intent_id,
                reason=reason,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            logger.error(f"Refund failed for {payment_intent_id}: {str(e)}")
            raise RefundFailed(str(e))

        logger.info(f"Created refund {refund.id} for {payment_intent_id} (status={refund.status})")
        return {"refund_id": refund.id, "status": refund.status}

    def create_transfer(
        self,
        *,
        amount_minor: int,
        currency: str,
        destination: str,
        metadata: dict,
        idempotency_key: str,
    ) -> Dict[str, str]:
        """
        Transfer funds to a connected account.

        Raises:
            TransferFailed: If Stripe rejects the transfer
        """
        try:
            transfer = stripe.Transfer.create(
                api_key=self.api_key,
                amount=amount_minor,
                currency=currency,
                destination=destination,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            logger.error(f"Transfer of {amount_minor} {currency} to {destination} failed: {str(e)}")
            raise TransferFailed(str(e))

        logger.info(f"Created transfer {transfer.id}: {amount_minor} {currency} -> {destination}")
        return {"transfer_id": transfer.id}

    def create_connect_account(
        self,
        *,
        email: Optional[str],
        country: str,
        metadata: dict,
        idempotency_key: str,
    ) -> Dict[str, str]:
        """
        Create an Express connected account that can receive transfers.

        Raises:
            ConnectAccountFailed: If Stripe rejects the request
        """
        try:
            account = stripe.Account.create(
                api_key=self.api_key,
                type="express",
                country=country,
                email=email,
                capabilities={"transfers": {"requested": True}},
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            logger.error(f"Failed to create Connect account ({idempotency_key}): {str(e)}")
            raise ConnectAccountFailed(str(e))

        logger.info(f"Created Connect account {account.id} for {idempotency_key}")
        return {"account_id": account.id}

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> Dict[str, str]:
        """
        Create a hosted onboarding link for a connected account.

        Raises:
            ConnectAccountFailed: If Stripe rejects the request
        """
        try:
            link = stripe.AccountLink.create(
                api_key=self.api_key,
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.error.StripeError as e:
            logger.error(f"Failed to create onboarding link for {account_id}: {str(e)}")
            raise ConnectAccountFailed(str(e))

        return {"url": link.url}


def verify_webhook_signature(payload: bytes, signature: str):
    """
    Verify a Stripe webhook payload and return the event as a plain dict.

    Raises:
        ValueError: If the payload or signature is invalid
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not set - Webhook verification will fail")
    try:
        stripe.Webhook.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET, tolerance=300)
    except stripe.error.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {str(e)}")
        raise ValueError("Invalid signature")
    return json.loads(payload)


def get_payment_processor() -> StripePaymentProcessor:
    """FastAPI dependency returning the configured payment processor."""
    return StripePaymentProcessor()
