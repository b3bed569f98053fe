import asyncio

from fastapi import APIRouter, WebSocket

from connection import Connection
from dispatcher import RelayDispatcher
from logging_config import get_logger
from schemas.messages import MessageDecodeError, decode_message

logger = get_logger(__name__)

signaling_router = APIRouter(tags=["signaling"])


@signaling_router.websocket("/")
async def signaling_endpoint(websocket: WebSocket):
    """Signaling socket: one JSON frame per message, relayed to the rest of the sender's room.

    Frames are best-effort: anything malformed or addressed to an unknown room is
    dropped without a reply and the socket stays open.
    """
    dispatcher: RelayDispatcher = websocket.app.state.dispatcher

    await websocket.accept()
    connection = Connection(websocket)
    logger.info(f"WebSocket connection accepted: {connection.id}")
    writer = asyncio.create_task(dispatcher.write_loop(connection))

    message_count = 0
    try:
        async for raw in connection.messages():
            message_count += 1
            try:
                message = decode_message(raw)
            except MessageDecodeError as e:
                logger.warning(f"Dropping frame #{message_count} from connection {connection.id}: {e}")
                continue

            logger.debug(f"Received {message.type} #{message_count} from connection {connection.id} for room {message.room_id!r}")
            await dispatcher.handle(connection, message)
    except Exception as e:
        logger.error(f"Error receiving from connection {connection.id} in room {connection.room_id}: {e}", exc_info=True)
    finally:
        await dispatcher.disconnect(connection)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        await connection.close()
