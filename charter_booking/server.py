from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from datetime import datetime, timezone
import asyncio
import logging

from .config import BACKGROUND_WORKERS_ENABLED, CORS_ORIGINS, LOG_LEVEL
from .database import async_session_factory, close_db, engine, init_db
from .redis_service import redis_service
from .services.dispatcher import SideEffectDispatcher
from .services.reaper import DeadlineReaper
from .api.routes import flights, ops, payments, quotes

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Charter Booking Lifecycle API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed input as 400 VALIDATION_ERROR."""
    logger.info(f"Validation error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=400,
        content={"detail": {
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
        }},
    )


def build_workers(target: FastAPI, session_factory=async_session_factory) -> None:
    """Attach a dispatcher and reaper to the app; routes reach them via app.state."""
    dispatcher = SideEffectDispatcher(session_factory)
    target.state.dispatcher = dispatcher
    target.state.reaper = DeadlineReaper(session_factory, on_expired=dispatcher.wake)
    target.state.worker_tasks = []


@app.on_event("startup")
async def startup():
    await init_db()
    build_workers(app)
    if BACKGROUND_WORKERS_ENABLED:
        app.state.worker_tasks = [
            asyncio.create_task(app.state.reaper.run_forever()),
            asyncio.create_task(app.state.dispatcher.run_forever()),
        ]
        logger.info("✅ Background reaper and dispatcher running")
    else:
        logger.info("Background workers disabled; run scripts/run_workers.py")


@app.on_event("shutdown")
async def shutdown():
    app.state.reaper.stop()
    app.state.dispatcher.stop()
    if app.state.worker_tasks:
        await asyncio.gather(*app.state.worker_tasks, return_exceptions=True)
    await redis_service.disconnect()
    await close_db()


@api_router.get("/")
async def root():
    return {"message": "Charter Booking Lifecycle API", "status": "running", "version": "1.0.0"}


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"error: {str(e)}"

    try:
        await redis_service.redis_client.ping()
        redis_status = "healthy"
    except Exception as e:
        redis_status = f"error: {str(e)}"

    return {
        # Redis is optional; only the database decides health
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "database": db_status,
        "redis": redis_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Include the routers
app.include_router(api_router)
app.include_router(quotes.router)
app.include_router(flights.router)
app.include_router(payments.router)
app.include_router(ops.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("charter_booking.server:app", host="0.0.0.0", port=8001, reload=True)
