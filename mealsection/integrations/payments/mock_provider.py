from __future__ import annotations

from mealsection.integrations.payments.base import REFERENCE_NOT_FOUND, PaymentsProvider, PaymentVerification


class MockPaymentsProvider(PaymentsProvider):
    """In-memory processor for dev and tests.

    Register transactions with :meth:`register`; unknown references behave
    like the processor's "reference not found" response.
    """

    name = "mock"
    transactions: dict[str, PaymentVerification] = {}

    @classmethod
    def register(cls, reference: str, *, amount_kobo: int, status: str = "success", email: str = "") -> None:
        cls.transactions[reference] = PaymentVerification(
            reference=reference,
            status=status,
            amount_kobo=int(amount_kobo),
            customer_email=email,
            raw={"provider": cls.name},
        )

    @classmethod
    def reset(cls) -> None:
        cls.transactions.clear()

    def verify(self, reference: str) -> PaymentVerification:
        found = self.transactions.get(reference)
        if found is None:
            raise RuntimeError(f"{REFERENCE_NOT_FOUND}:Transaction reference not found")
        return found
