"""
WebSocket relays for Redis event channels.

Clients subscribe to the slots of a pizza day or to one order and receive
the JSON events published by the services. Events are hints to refetch,
not a source of truth.
"""
import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError

from pizzaday.app.core.logging import get_logger
from pizzaday.app.services.notifications import EventPublisher, slot_channel, order_channel

router = APIRouter()
logger = get_logger(__name__)


async def _forward(websocket: WebSocket, pubsub) -> None:
    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue
        await websocket.send_text(message["data"])


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Anything the client sends is ignored; this only notices the close
    while True:
        await websocket.receive_text()


async def relay_channel(websocket: WebSocket, channel: str) -> None:
    await websocket.accept()
    redis = await EventPublisher.get_redis()
    pubsub = redis.pubsub()
    try:
        await pubsub.subscribe(channel)
    except (RedisError, OSError) as e:
        logger.error("Realtime subscribe failed", channel=channel, error=str(e))
        await pubsub.aclose()
        await websocket.close(code=1011)
        return

    logger.info("Realtime client connected", channel=channel)
    tasks = [
        asyncio.create_task(_forward(websocket, pubsub)),
        asyncio.create_task(_wait_for_disconnect(websocket)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error and not isinstance(error, WebSocketDisconnect):
                logger.warning("Realtime relay stopped", channel=channel, error=str(error))
    finally:
        for task in tasks:
            task.cancel()
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Realtime unsubscribe failed", channel=channel, error=str(e))
        logger.info("Realtime client disconnected", channel=channel)


@router.websocket("/ws/pizza-days/{pizza_day_id}/slots")
async def slot_updates(websocket: WebSocket, pizza_day_id: int):
    """Capacity changes for every slot of a pizza day."""
    await relay_channel(websocket, slot_channel(pizza_day_id))


@router.websocket("/ws/orders/{public_id}")
async def order_updates(websocket: WebSocket, public_id: str):
    """Status changes of one order."""
    await relay_channel(websocket, order_channel(public_id))
