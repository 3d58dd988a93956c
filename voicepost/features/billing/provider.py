"""
Payment gateway protocol.

Defines the interface the payment service needs from a gateway so the
Razorpay adapter can be swapped for a fake in tests.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass
class GatewayOrder:
    """Remote order as created by the gateway."""
    order_id: str
    amount: int
    currency: str
    receipt: str
    status: str = "created"
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must handle:
    - Remote order creation (amount in minor currency units)
    - Signature verification of the checkout result
    """

    public_key: str

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """
        Create a remote order.

        Raises:
            PaymentGatewayError: gateway unreachable, timed out or non-2xx
        """
        ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Return True when the signature matches the (order_id, payment_id) pair."""
        ...


class PaymentGatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
