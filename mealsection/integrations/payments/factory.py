from __future__ import annotations

from mealsection.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    config_value,
    integration_health,
)
from mealsection.integrations.payments.base import PaymentsProvider
from mealsection.integrations.payments.mock_provider import MockPaymentsProvider
from mealsection.integrations.payments.paystack_provider import PaystackPaymentsProvider, DEFAULT_VERIFY_URL


def build_payments_provider(config) -> PaymentsProvider:
    provider = config_value(config, "PAYMENTS_PROVIDER", "paystack").lower()
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")
    if provider == "mock":
        return MockPaymentsProvider()
    if provider != "paystack":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = config_value(config, "PAYSTACK_SECRET_KEY")
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing PAYSTACK_SECRET_KEY")
    return PaystackPaymentsProvider(
        secret_key=secret_key,
        verify_url=config_value(config, "PAYSTACK_VERIFY_URL", DEFAULT_VERIFY_URL),
    )


def payment_health(config) -> dict:
    provider = config_value(config, "PAYMENTS_PROVIDER", "paystack").lower()
    missing = []
    if provider == "paystack" and not config_value(config, "PAYSTACK_SECRET_KEY"):
        missing.append("PAYSTACK_SECRET_KEY")
    return integration_health("disabled" if provider == "disabled" else "enabled", missing, provider=provider)
