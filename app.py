from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.lists import lists_router, items_router
from routers.sessions import sessions_router
from backend import redis_backend
from constants import BROADCAST_BACKEND
from realtime.broadcaster import RoomBroadcaster
from realtime.connection import WebSocketConnection
from realtime.gateway import ConnectionGateway
from realtime.redis_relay import RedisRoomBroadcaster
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def build_broadcaster() -> RoomBroadcaster:
    if BROADCAST_BACKEND == "redis":
        logger.info("Using Redis pub/sub broadcaster")
        return RedisRoomBroadcaster(redis_backend)
    return RoomBroadcaster()


# One gateway per process; it owns the room and session maps
gateway = ConnectionGateway(store=redis_backend, broadcaster=build_broadcaster())


def get_gateway() -> ConnectionGateway:
    return gateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_backend.ping()
    yield
    await gateway.broadcaster.close()
    logger.info("Gateway shut down")


app = FastAPI(lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(lists_router)
app.include_router(items_router)
app.include_router(sessions_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, gateway: ConnectionGateway = Depends(get_gateway)):
    """WebSocket endpoint for list sync.

    Every frame is JSON `{"event": ..., "data": ...}`. The client sends
    `join-list` first; mutation events sent before the join resolves are
    dropped.
    """
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    connection.start()
    logger.info(f"WebSocket connection accepted: {connection.id}")

    message_count = 0
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection.id}")
                break
            except ValueError as e:
                logger.warning(f"Ignoring non-JSON frame from connection {connection.id}: {e}")
                continue
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection.id}")
            gateway.dispatch(connection, frame)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
    finally:
        await gateway.disconnect(connection)
        await connection.close()
