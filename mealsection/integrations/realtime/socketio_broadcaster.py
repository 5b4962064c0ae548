from __future__ import annotations

import socketio

from mealsection.integrations.realtime.base import Broadcaster


class SocketIOBroadcaster(Broadcaster):
    """Broadcaster backed by a python-socketio server.

    With ``message_queue`` set, emits travel through Redis so clients
    connected to any web worker receive them.
    """

    name = "socketio"

    def __init__(self, *, cors_origins="*", message_queue: str = ""):
        client_manager = socketio.RedisManager(message_queue) if message_queue else None
        self.server = socketio.Server(
            async_mode="threading",
            cors_allowed_origins=cors_origins,
            client_manager=client_manager,
        )

        @self.server.on("join")
        def _join(sid, room):
            if room:
                self.server.enter_room(sid, str(room))

    def wrap(self, wsgi_app):
        return socketio.WSGIApp(self.server, wsgi_app)

    def emit(self, event: str, payload: dict, *, room: str | None = None) -> None:
        self.server.emit(event, payload, room=room)
