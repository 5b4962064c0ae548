from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


# Error prefixes raised by providers as ``RuntimeError(f"{CODE}:{detail}")``.
REFERENCE_NOT_FOUND = "PAYSTACK_REFERENCE_NOT_FOUND"
VERIFY_FAILED = "PAYSTACK_VERIFY_FAILED"


@dataclass
class PaymentVerification:
    """What the processor says about one transaction reference."""

    reference: str
    status: str
    amount_kobo: int
    customer_email: str = ""
    currency: str = "NGN"
    raw: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def amount_naira(self) -> Decimal:
        return Decimal(self.amount_kobo) / 100


class PaymentsProvider:
    name = "unknown"

    def verify(self, reference: str) -> PaymentVerification:
        raise NotImplementedError
