from typing import Optional, Protocol


class PaymentProcessorPort(Protocol):
    """Capability the orchestrators need from the payment processor.

    Every mutating call accepts a caller-supplied idempotency key so a retried
    invocation cannot double-refund or double-transfer.
    """

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
    ) -> dict: ...

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        reason: str,
        metadata: dict,
        idempotency_key: str,
    ) -> dict: ...

    def create_transfer(
        self,
        *,
        amount_minor: int,
        currency: str,
        destination: str,
        metadata: dict,
        idempotency_key: str,
    ) -> dict: ...

    def create_connect_account(
        self,
        *,
        email: Optional[str],
        country: str,
        metadata: dict,
        idempotency_key: str,
    ) -> dict: ...

    def create_account_link(self, *, account_id: str, refresh_url: str, return_url: str) -> dict: ...
