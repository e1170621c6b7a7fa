"""WebSocket live tail of the collector output channel."""
import asyncio
import structlog
from fastapi import WebSocket, WebSocketDisconnect
from ..channel import OutputChannel, Subscription
from ..event_models import dumps

log = structlog.get_logger()


class RecordStreamManager:
    """
    Tracks WebSocket tail clients.

    Each client gets its own channel subscription, so a slow client only
    loses records from its own buffer.
    """

    def __init__(self, channel: OutputChannel, max_buffer: int = 100):
        self.channel = channel
        self.max_buffer = max_buffer
        self._connections: dict[WebSocket, Subscription] = {}

    async def connect(self, websocket: WebSocket) -> Subscription:
        await websocket.accept()
        subscription = self.channel.subscribe(self.max_buffer)
        self._connections[websocket] = subscription
        log.info("websocket.connected", total_connections=len(self._connections))
        return subscription

    def disconnect(self, websocket: WebSocket):
        subscription = self._connections.pop(websocket, None)
        if subscription is not None:
            subscription.close()
            log.info("websocket.disconnected", total_connections=len(self._connections))

    @property
    def connection_count(self) -> int:
        return len(self._connections)


async def _forward_records(websocket: WebSocket, subscription: Subscription):
    async for record in subscription:
        await websocket.send_text(dumps({"type": "record", "data": record.to_dict()}).decode())


async def _answer_pings(websocket: WebSocket):
    while True:
        message = await websocket.receive_text()
        if message == "ping":
            await websocket.send_text("pong")


async def handle_record_stream(websocket: WebSocket, manager: RecordStreamManager):
    """
    Stream every record emitted after the client connected.

    Args:
        websocket: WebSocket connection
        manager: Connection registry bound to the collector channel
    """
    subscription = await manager.connect(websocket)
    tasks = []

    try:
        await websocket.send_json({
            "type": "welcome",
            "message": "Connected to collector stream",
            "buffer": manager.max_buffer,
        })

        tasks = [
            asyncio.create_task(_forward_records(websocket, subscription)),
            asyncio.create_task(_answer_pings(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()

    except WebSocketDisconnect:
        log.info("websocket.client_disconnected")
    except Exception as e:
        log.error("websocket.error", error=str(e), exc_info=True)
    finally:
        for task in tasks:
            task.cancel()
        manager.disconnect(websocket)
