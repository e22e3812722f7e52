"""
WebSocket Bridge

Subscribes to the Redis order channels and forwards every message to the
WebSocket clients of that store:
- Store-wide channel: orders:store:{store_id}

Clients treat a message only as a hint to refetch their order lists.
Run with: uvicorn restos.ws_bridge:app
"""
import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CHANNEL_PATTERN = "orders:store:*"
RETRY_SECONDS = 5

# store_id -> set of WebSockets
store_connections: dict[int, set[WebSocket]] = {}


def parse_store_channel(channel: str) -> int | None:
    parts = channel.split(":")
    if len(parts) != 3 or parts[:2] != ["orders", "store"]:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


async def broadcast(store_id: int, data: str) -> int:
    """Send to every client of the store; sockets that fail are dropped."""
    clients = store_connections.get(store_id)
    if not clients:
        return 0

    dead_connections = set()
    sent = 0
    for ws in list(clients):
        try:
            await ws.send_text(data)
            sent += 1
        except (WebSocketDisconnect, RuntimeError, OSError):
            dead_connections.add(ws)
    clients -= dead_connections
    if not clients:
        store_connections.pop(store_id, None)
    return sent


async def handle_message(message: dict) -> None:
    if message["type"] != "pmessage":
        return
    channel = message["channel"]
    data = message["data"]
    if isinstance(channel, bytes):
        channel = channel.decode()
    if isinstance(data, bytes):
        data = data.decode()

    store_id = parse_store_channel(channel)
    if store_id is None:
        logger.warning(f"Ignoring message on unexpected channel {channel}")
        return
    await broadcast(store_id, data)


async def redis_listener():
    """Subscribe to Redis and broadcast to WebSocket clients."""
    while True:
        try:
            r = redis.from_url(settings.redis_url)
            pubsub = r.pubsub()
            await pubsub.psubscribe(CHANNEL_PATTERN)

            async for message in pubsub.listen():
                await handle_message(message)

        except (redis.RedisError, OSError) as e:
            logger.error(f"Redis connection error: {e}", exc_info=True)
            await asyncio.sleep(RETRY_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(redis_listener())
    yield
    task.cancel()


app = FastAPI(title="RestOS WS Bridge", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "stores": len(store_connections),
        "total_connections": sum(len(c) for c in store_connections.values()),
    }


@app.websocket("/ws/{store_id}")
async def websocket_store_endpoint(websocket: WebSocket, store_id: int):
    client_host = websocket.client.host if websocket.client else "unknown"
    await websocket.accept()
    logger.info(f"WebSocket connected: store {store_id} from {client_host}")

    store_connections.setdefault(store_id, set()).add(websocket)
    try:
        while True:
            # Incoming messages are ignored; receiving keeps the socket alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if store_id in store_connections:
            store_connections[store_id].discard(websocket)
            if not store_connections[store_id]:
                del store_connections[store_id]
