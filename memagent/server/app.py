"""
Memory Agent Server
===================
FastAPI app exposing one WebSocket session per connection:

    ws://host:port/ws?userId=u1
    ws://host:port/ws/u1

Each connection gets its own ConversationController. The collaborator
adapters (store, memory index, embedder, generator) are built once at
startup and shared by every controller.
"""

from dataclasses import dataclass
from typing import Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState

from memagent.core import events
from memagent.core.controller import ConversationController
from memagent.core.degradation import DegradationPolicy
from memagent.core.generator import GenerationService
from memagent.core.prompt import PromptAssembler
from memagent.memory import (
    ConversationStore,
    EmbeddingService,
    MemoryIndex,
    MemoryManager,
)
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger, log_memory

logger = get_logger("server")

HTTP_BANNER = "Memory Agent HTTP endpoint"


@dataclass
class Services:
    """Collaborators shared by all sessions of one process."""

    store: object
    memory: object
    generator: object
    assembler: PromptAssembler
    policy: DegradationPolicy
    config: dict


def build_services(config: dict = None) -> Services:
    """Construct the production adapters from config."""
    config = config or load_config()
    embedder = EmbeddingService(config)
    index = MemoryIndex(config)
    return Services(
        store=ConversationStore(config),
        memory=MemoryManager(embedder, index, config),
        generator=GenerationService(config),
        assembler=PromptAssembler(config),
        policy=DegradationPolicy(config),
        config=config,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built collaborators (tests). Built from config at
                  startup when omitted.
    """
    app = FastAPI(docs_url=None, redoc_url=None)
    app.state.services = services

    # Live controllers, for shutdown
    controllers: Set[ConversationController] = set()

    @app.on_event("startup")
    async def startup():
        if app.state.services is None:
            app.state.services = build_services()
            if not app.state.services.generator.is_available():
                logger.warning("⚠️ Ollama is not reachable; replies will be degraded until it is")
        log_memory(logger)

    @app.on_event("shutdown")
    async def shutdown():
        for controller in list(controllers):
            await controller.close("server shutdown")
        store = getattr(app.state.services, "store", None)
        if store is not None and hasattr(store, "close"):
            await store.close()

    @app.get("/")
    async def index():
        return PlainTextResponse(HTTP_BANNER)

    @app.get("/stats")
    async def stats():
        return {**events.get_state(), "ram": log_memory(logger)["status"]}

    @app.websocket("/ws")
    async def websocket_query(ws: WebSocket, userId: Optional[str] = None):
        await _serve(ws, userId)

    @app.websocket("/ws/{user_id}")
    async def websocket_path(ws: WebSocket, user_id: str):
        await _serve(ws, user_id)

    async def _serve(ws: WebSocket, user_id: Optional[str]):
        """Run one session for the lifetime of the WebSocket."""
        await ws.accept()
        services: Services = app.state.services

        async def send(event: dict):
            await ws.send_json(event)

        controller = ConversationController(
            send,
            services.store,
            services.memory,
            services.generator,
            assembler=services.assembler,
            policy=services.policy,
            config=services.config,
        )
        await controller.open(user_id)
        controllers.add(controller)

        reason = "client disconnected"
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    reason = f"client disconnected (code {message.get('code')})"
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await controller.handle_incoming(raw)
        except WebSocketDisconnect as e:
            reason = f"client disconnected (code {e.code})"
        finally:
            await controller.close(reason)
            controllers.discard(controller)
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.close()

    return app


def serve(host: str = None, port: int = None, services: Optional[Services] = None):
    """Run the server in the foreground with uvicorn."""
    import uvicorn

    server_cfg = load_config().get("server") or {}
    host = host or server_cfg.get("host", "127.0.0.1")
    port = port or server_cfg.get("port", 8787)

    logger.info(f"🌐 Memory Agent: ws://{host}:{port}/ws?userId=<id>")
    uvicorn.run(
        create_app(services),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
