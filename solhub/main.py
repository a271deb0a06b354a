import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import anyio
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import router
from .config_manager import ConfigManager, get_config
from .connections import ConnectionManager
from .database import ChatStore, get_db
from .fanout import MessageFanout
from .presence import PresenceCoordinator
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def create_app(store: Optional[ChatStore] = None, config: Optional[ConfigManager] = None) -> FastAPI:
    config = config or get_config()
    chat_config = config.get_chat_config()
    store = store or ChatStore(get_db(config))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await run_in_threadpool(store.init_db, chat_config["channels"], chat_config["voice_channels"])
        except PyMongoError:
            logger.exception("Error initializing channels")
        yield

    app = FastAPI(title="SolHub Chat", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.get_server_config().get("frontend_url")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = ConnectionRegistry()
    connections = ConnectionManager()
    app.state.store = store
    app.state.registry = registry
    app.state.connections = connections
    app.state.channels = list(chat_config["channels"])
    app.state.history_limit = chat_config.get("history_limit", 50)
    app.state.presence = PresenceCoordinator(store, registry, connections)
    app.state.fanout = MessageFanout(store, registry, connections, chat_config["channels"],
                                     chat_config.get("default_channel", "general"))

    app.include_router(router)
    app.add_api_websocket_route("/ws", websocket_endpoint)
    register_error_handlers(app)
    return app


def register_error_handlers(app: FastAPI):
    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request, exc):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request, exc):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse({"error": detail}, status_code=400)

    @app.exception_handler(PyMongoError)
    async def handle_store_error(request, exc):
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
        return JSONResponse({"error": "Database error"}, status_code=500)


async def websocket_endpoint(websocket: WebSocket):
    state = websocket.app.state
    connections: ConnectionManager = state.connections
    presence: PresenceCoordinator = state.presence
    fanout: MessageFanout = state.fanout

    connection_id = await connections.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            try:
                frame = json.loads(message.get("text"))
            except (TypeError, ValueError):
                frame = None
            if not isinstance(frame, dict):
                logger.warning(f"Malformed frame from {connection_id}")
                continue

            event = frame.get("event")
            data = frame.get("data")
            if event == "join":
                await presence.handle_join(connection_id, data)
            elif event == "sendMessage":
                await fanout.send_message(connection_id, data)
            elif event == "broadcastMessage":
                await fanout.broadcast_message(connection_id, data)
            elif event == "typing":
                fanout.typing(connection_id, data)
            else:
                logger.warning(f"Unknown event {event!r} from {connection_id}")
    except WebSocketDisconnect:
        pass
    finally:
        # Presence cleanup must finish even when the task is being cancelled.
        with anyio.CancelScope(shield=True):
            await presence.disconnect(connection_id)
            await connections.disconnect(connection_id)
        logger.info(f"Total connections: {connections.count()}")
