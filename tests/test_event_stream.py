import asyncio

from gatekeeper.api.v1.events import stream_events
from gatekeeper.services.notifier import TenantEventHub


class ResetSocket:
    """Client that never disconnects but whose every send fails"""

    def __init__(self, hub):
        self.hub = hub
        self.accepted = False
        self.sends = 0

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        self.sends += 1
        raise ConnectionResetError("peer reset")

    async def receive(self):
        self.hub.emit_to_tenant("a", "kpi:update", {})
        await asyncio.Event().wait()


class LeavingSocket:
    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)

    async def receive(self):
        return {"type": "websocket.disconnect", "code": 1000}


def test_failed_send_ends_stream_and_unsubscribes():
    hub = TenantEventHub()
    socket = ResetSocket(hub)

    asyncio.run(asyncio.wait_for(stream_events(socket, "a", hub=hub), timeout=5))

    assert socket.accepted
    assert socket.sends == 1
    assert hub.total_subscribers() == 0


def test_disconnect_ends_stream_and_unsubscribes():
    hub = TenantEventHub()

    asyncio.run(asyncio.wait_for(stream_events(LeavingSocket(), None, hub=hub), timeout=5))

    assert hub.total_subscribers() == 0
