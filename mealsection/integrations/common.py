from __future__ import annotations


class IntegrationDisabledError(RuntimeError):
    """The integration is switched off by configuration; callers skip it."""


class IntegrationMisconfiguredError(RuntimeError):
    """The integration is switched on but a required setting is missing."""


def config_value(config, key: str, default: str = "") -> str:
    return str(config.get(key) or default).strip()


def integration_health(mode: str, missing: list[str], **extra) -> dict:
    """Shape shared by the ``/api/health`` integration entries."""
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "missing": missing, **extra}
