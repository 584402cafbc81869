# wastelink/main.py
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wastelink.core.config import settings
from wastelink.core.errors import InvalidTransition, PickupError
from wastelink.core.logging import configure_logging
from wastelink.deps import build_notification_store, build_pickup_service
from wastelink.routers import notifications as notifications_router
from wastelink.routers import pickups as pickups_router

logger = structlog.get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_json)
    app.state.notifications = build_notification_store(settings)
    app.state.pickups = build_pickup_service(settings, store=app.state.notifications)

    if settings.use_mongo:
        from wastelink.core.db import get_client, get_db
        from wastelink.core.indexes import ensure_indexes
        await ensure_indexes(get_db())
        logger.info("mongo ready", db=settings.mongo_db)

    yield

    if settings.use_mongo:
        get_client().close()


app = FastAPI(lifespan=lifespan, title="WasteLink API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(PickupError)
async def pickup_error_handler(request: Request, exc: PickupError):
    body = {"detail": exc.detail, "error": type(exc).__name__}
    if isinstance(exc, InvalidTransition):
        body["current"] = exc.current
        body["requested"] = exc.requested
    if exc.status_code >= 500:
        logger.error("pickup request failed", path=request.url.path, error=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body)

app.include_router(pickups_router.router)
app.include_router(notifications_router.router)

# Health
@app.get("/health")
def health():
    return {"ok": True}
