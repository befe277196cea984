"""
InstantHPI Staging Service
Staged patient messages with countdown auto-send via Spruce Health
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import List
import asyncio
import structlog

from staging_service.routers import staging, conversations
from staging_service.config import settings
from staging_service.services.notifications import BroadcastNotifier
from staging_service.services.queue_store import QueueStore
from staging_service.services.spruce_service import SpruceClient
from staging_service.services.staging_queue import StagingQueueManager
from staging_service.services.websocket_manager import ConnectionManager

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


def build_staging_queue(connections: ConnectionManager, spruce: SpruceClient) -> StagingQueueManager:
    """Wire the queue to its store, the Spruce send operation and the dashboard feed"""
    queue = StagingQueueManager(
        store=QueueStore(settings.store_dir),
        send=spruce.send_message,
        notifier=BroadcastNotifier(connections),
        storage_key=settings.staging_queue_key,
        initial_countdown=settings.initial_countdown,
        tick_interval=settings.tick_interval_ms / 1000,
        cancel_grace=settings.cancel_grace_ms / 1000,
        sent_grace=settings.sent_grace_ms / 1000,
        min_content_length=settings.min_content_length,
    )

    pending = set()

    def push_snapshot(messages: List[dict]):
        if not connections.active_connections:
            return
        task = asyncio.get_running_loop().create_task(
            connections.broadcast({"type": "queue", "messages": messages})
        )
        pending.add(task)
        task.add_done_callback(pending.discard)

    queue.subscribe(push_snapshot)
    return queue


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting InstantHPI Staging Service")
    connections = ConnectionManager()
    spruce = SpruceClient()
    if not spruce.is_configured:
        logger.warning("Spruce API key not set; staged messages will fail to send")

    queue = build_staging_queue(connections, spruce)
    restored = queue.restore()
    logger.info("Staging queue ready", restored=restored)

    app.state.connections = connections
    app.state.staging_queue = queue
    yield
    await queue.shutdown()
    await spruce.close()
    logger.info("Shutting down InstantHPI Staging Service")


app = FastAPI(
    title="InstantHPI Staging Service",
    description="Staged patient messaging with countdown auto-send",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(staging.router, prefix="/v1/staging", tags=["Staging Queue"])
app.include_router(conversations.router, prefix="/v1/conversations", tags=["Conversations"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": settings.service_name}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "InstantHPI Staging Service",
        "version": "1.0.0",
        "docs": "/docs"
    }
