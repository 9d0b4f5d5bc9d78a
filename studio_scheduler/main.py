import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from .api.routes import sessions, availability, bookings, analytics, misc
from .core.errors import SchedulingUnavailable
from .db.session import Base, engine, SessionLocal
from .config import get_settings
from .services.authorization import ensure_capabilities_complete
from .services.scheduling_service import SchedulingEngine
from .workers.scheduler import get_scheduler

logger = logging.getLogger(__name__)

app = FastAPI(title="Studio Scheduler API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router, prefix="/api/v1")
app.include_router(availability.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")
app.include_router(misc.router, prefix="/api/v1")


@app.exception_handler(SchedulingUnavailable)
async def scheduling_unavailable_handler(request: Request, exc: SchedulingUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc)},
        headers={"Retry-After": str(max(int(exc.retry_after), 1))},
    )


@app.exception_handler(OperationalError)
async def storage_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.warning("Storage unavailable", extra={"path": request.url.path}, exc_info=exc)
    return await scheduling_unavailable_handler(
        request, SchedulingUnavailable("Storage is temporarily unavailable")
    )


@app.on_event("startup")
async def startup_event() -> None:
    ensure_capabilities_complete()
    Base.metadata.create_all(bind=engine)
    scheduling_engine = SchedulingEngine(SessionLocal, settings=get_settings())
    indexed = scheduling_engine.rebuild_index()
    logger.info("Scheduling engine ready", extra={"indexed_sessions": indexed})
    app.state.scheduling_engine = scheduling_engine
    scheduler = get_scheduler(scheduling_engine)
    scheduler.start()
    app.state.scheduler = scheduler


@app.on_event("shutdown")
async def shutdown_event() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
