from __future__ import annotations

from mealsection.integrations.common import IntegrationMisconfiguredError, config_value
from mealsection.integrations.realtime.base import Broadcaster, NullBroadcaster


def build_broadcaster(config, *, cors_origins="*") -> Broadcaster:
    mode = config_value(config, "REALTIME_MODE", "disabled").lower()
    if mode == "disabled":
        return NullBroadcaster()
    if mode != "socketio":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:realtime_mode={mode}")

    from mealsection.integrations.realtime.socketio_broadcaster import SocketIOBroadcaster

    return SocketIOBroadcaster(
        cors_origins=cors_origins,
        message_queue=config_value(config, "SOCKETIO_MESSAGE_QUEUE"),
    )
