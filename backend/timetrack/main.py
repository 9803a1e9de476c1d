import logging
import sys
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from timetrack.config import settings
from timetrack.errors import TimeTrackError, ValidationError
from timetrack.routers import auth, projects, realtime, tasks, time_entries, users
from timetrack.services.realtime_hub import RealtimeHub
from timetrack.services.timer_engine import UserLocks
from timetrack.utils.logger import logger

# Global logging configuration
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

app = FastAPI(title="TimeTrack API", version="1.0.0")

# One hub and one lock table per process; routes reach them through app.state.
app.state.hub = RealtimeHub()
app.state.user_locks = UserLocks()

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"detail": {"code": "INTERNAL_ERROR", "message": "Internal server error", "rid": rid}},
            status_code=500,
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(TimeTrackError)
async def timetrack_error_handler(request: Request, exc: TimeTrackError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies and params use the same 400 shape as engine validation.
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    error = ValidationError(message, details={"errors": errors})
    return JSONResponse(status_code=error.status_code, content={"detail": error.to_detail()})


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(time_entries.router)
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(realtime.router)


@app.on_event("startup")
async def startup_event():
    logger.info("TimeTrack API starting up...")

    if settings.is_sqlite:
        from timetrack.database import init_db

        init_db()
        logger.info("Using SQLite database - tables created if missing")
    else:
        # Postgres schema is owned by Alembic: `alembic upgrade head` before boot.
        logger.info("Using PostgreSQL database - expecting migrations to be applied")


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.hub.close_all()
    logger.info("TimeTrack API shut down")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "realtime": app.state.hub.get_stats()}


@app.get("/healthz/db")
async def healthz_db():
    """Database health check endpoint"""
    try:
        from timetrack.database import engine

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "TRANSIENT_IO", "message": f"Database unavailable: {type(e).__name__}"},
        )


@app.get("/")
async def root():
    return {
        "message": "TimeTrack API",
        "version": "1.0.0",
        "docs": "/docs",
    }
