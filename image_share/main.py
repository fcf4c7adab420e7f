from fastapi import FastAPI, Depends
from contextlib import asynccontextmanager
import uvicorn
import logging

from image_share.storage.dynamodb import DynamoDBService
from image_share.storage.files import LocalFileStorage
from image_share.clock import SystemClock
from image_share.messaging.bus import MessageBus
from image_share.share_service.workflow import ShareWorkflow
from image_share.thumbnail_service.worker import ThumbnailWorker
from image_share.dependencies.dependencies import get_message_bus, get_share_workflow
from image_share.settings import settings
from image_share.exceptions import add_exception_handlers

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("image-share")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Connects the store and the message bus, then starts the thumbnail
        worker subscription. The bus connection failing aborts startup.
    """
    # Initialize resources
    app.state.db = DynamoDBService()
    app.state.files = LocalFileStorage()
    app.state.bus = MessageBus(clock=SystemClock())
    await app.state.bus.initialize()
    app.state.share_workflow = ShareWorkflow(app.state.db, app.state.bus)

    app.state.thumbnail_worker = None
    if settings.thumbnail_worker_enabled:
        app.state.thumbnail_worker = ThumbnailWorker(app.state.db, app.state.files)
        await app.state.thumbnail_worker.start(app.state.bus)
    yield
    # Cleanup resources
    await app.state.bus.close()
    app.state.db.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Image Share Service",
    root_path="/api/v1"
)

# Add exception handlers
add_exception_handlers(app)

# Check Health
@app.get("/")
def read_root():
    """
        Default end point

    """
    return "Image Share Service is running."

@app.get("/health")
def health(
    bus: MessageBus = Depends(get_message_bus),
    workflow: ShareWorkflow = Depends(get_share_workflow),
):
    """Reports message bus connectivity and which consumers run in this process."""
    connected = bus.is_connected
    return {
        "status": "ok" if connected else "degraded",
        "message_bus": connected,
        "consumers": sorted(bus.consumers),
        "share_expiration_days": workflow.expiration_days,
    }

if __name__ == "__main__":
    uvicorn.run("image_share.main:app", host="0.0.0.0", port=8000, reload=True)
