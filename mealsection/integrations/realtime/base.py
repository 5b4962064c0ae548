from __future__ import annotations

import logging


logger = logging.getLogger(__name__)


class Broadcaster:
    """Fan-out of realtime events to connected dashboards."""

    name = "unknown"

    def emit(self, event: str, payload: dict, *, room: str | None = None) -> None:
        raise NotImplementedError


class NullBroadcaster(Broadcaster):
    name = "null"

    def emit(self, event: str, payload: dict, *, room: str | None = None) -> None:
        logger.debug("realtime_emit_skipped event=%s room=%s", event, room or "")
