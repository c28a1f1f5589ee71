# main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging

from txn_alerts.core.config import settings
from txn_alerts.db.mongodb import connect_to_mongo, close_mongo_connection, get_database
from txn_alerts.db.redis_client import connect_to_redis, close_redis_connection

from txn_alerts.api.v1.routes.transaction_route import router as transaction_router
from txn_alerts.api.v1.routes.notification_route import router as notification_router
from txn_alerts.api.v1.routes.alert_queue_route import router as alert_queue_router

from txn_alerts.core.dsa.mongo_dsa import MongoDSA
from txn_alerts.core.dsa.redis_dsa import relay_redis_notifications, stop_relay
from txn_alerts.services.pipeline import build_pipeline

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# FASTAPI APP
# -----------------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Transaction anomaly detection, alert queue and realtime wallet notifications"
)

# -----------------------------
# CORS MIDDLEWARE
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# ROUTERS
# -----------------------------
app.include_router(transaction_router, prefix="/api/v1")
app.include_router(notification_router, prefix="/api/v1")
app.include_router(alert_queue_router, prefix="/api/v1")


# -----------------------------
# STARTUP EVENT
# -----------------------------
@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Starting %s (%s storage)...", settings.PROJECT_NAME, settings.STORAGE_BACKEND)

    db = None
    if settings.STORAGE_BACKEND == "mongo":
        await connect_to_mongo()
        db = get_database()
        await MongoDSA(db).ensure_indexes()
        logger.info("🔧 Indexes created")

    rc = await connect_to_redis()

    pipeline = build_pipeline(settings, db=db, rc=rc)
    app.state.pipeline = pipeline
    app.state.relay_task = None

    # Cross-instance fan-out: every instance relays Redis events to its own websockets
    if rc is not None:
        app.state.relay_task = asyncio.get_running_loop().create_task(
            relay_redis_notifications(rc, pipeline.broker)
        )

    if settings.SCHEDULER_ENABLED:
        pipeline.scheduler.start()


# -----------------------------
# SHUTDOWN EVENT
# -----------------------------
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 Shutting down API...")
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        await pipeline.scheduler.stop()

    relay_task = getattr(app.state, "relay_task", None)
    if relay_task is not None:
        await stop_relay(relay_task)

    await close_redis_connection()
    await close_mongo_connection()


# -----------------------------
# ROOT ENDPOINT
# -----------------------------
@app.get("/", tags=["Health"])
def root():
    return {
        "message": "Transaction Alert Pipeline Running",
        "version": "1.0.0",
        "storage": settings.STORAGE_BACKEND,
        "docs": "/docs"
    }
