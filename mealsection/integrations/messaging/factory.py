from __future__ import annotations

from mealsection.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    config_value,
    integration_health,
)
from mealsection.integrations.messaging.base import MessagingProvider
from mealsection.integrations.messaging.mock_provider import MockMessagingProvider


def build_messaging_provider(config) -> MessagingProvider:
    mode = config_value(config, "NOTIFICATIONS_MODE", "disabled").lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:notifications")
    if mode == "mock":
        return MockMessagingProvider()
    if mode != "live":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:notifications_mode={mode}")

    smtp_host = config_value(config, "SMTP_HOST")
    smtp_user = config_value(config, "SMTP_USER")
    smtp_from = config_value(config, "SMTP_FROM", smtp_user)
    missing = []
    if not smtp_host:
        missing.append("SMTP_HOST")
    if not smtp_from:
        missing.append("SMTP_FROM")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")

    from mealsection.integrations.messaging.live_provider import LiveMessagingProvider

    return LiveMessagingProvider(
        smtp_host=smtp_host,
        smtp_port=int(config.get("SMTP_PORT") or 587),
        smtp_user=smtp_user,
        smtp_pass=config_value(config, "SMTP_PASS"),
        smtp_from=smtp_from,
        firebase_service_account=config_value(config, "FIREBASE_SERVICE_ACCOUNT"),
    )


def messaging_health(config) -> dict:
    mode = config_value(config, "NOTIFICATIONS_MODE", "disabled").lower()
    missing = []
    if mode == "live":
        missing = [key for key in ("SMTP_HOST", "FIREBASE_SERVICE_ACCOUNT") if not config_value(config, key)]
    return integration_health(mode, missing)
