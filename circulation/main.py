from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse, Response
import time
import uuid
import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

from circulation.api.v1.dependencies import get_db, get_engine
from circulation.api.v1.endpoints import admin, copies, loans, members, payments, reservations
from circulation.core.config import settings
from circulation.core.errors import CirculationError, StoreUnavailable
from circulation.core.logging import configure_logging, get_logger, request_id_ctx
from circulation.db.session import Base, engine as db_engine
from circulation.tasks.scheduler import start_scheduler, stop_scheduler


# Configurar logging global al arrancar el módulo
configure_logging()
request_logger = get_logger("api.request")

app = FastAPI(
    title="Library Circulation API",
    version="1.0.0",
)

# Routers de la API
app.include_router(loans.router)
app.include_router(reservations.router)
app.include_router(payments.router)
app.include_router(members.router)
app.include_router(copies.router)
app.include_router(admin.router)


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=db_engine)
    app.state.scheduler = start_scheduler(get_engine(), settings.SWEEP_INTERVAL_MINUTES)


@app.on_event("shutdown")
def shutdown_event():
    stop_scheduler(getattr(app.state, "scheduler", None))


@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    """
    Traduce los errores del motor a HTTP.
    Los definitivos (4xx) llegan al usuario; Conflict y StoreUnavailable
    indican que se puede reintentar.
    """
    request_logger.info(
        "circulation_error",
        extra={
            "method": request.method,
            "path": request.url.path,
            "error": exc.kind,
            "status_code": exc.status_code,
            "retryable": exc.retryable,
        },
    )
    headers = {"Retry-After": "1"} if isinstance(exc, StoreUnavailable) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind, "retryable": exc.retryable},
        headers=headers,
    )


def _request_fields(request: Request, request_id: str, status_code: int, start: float) -> dict:
    return {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        "client_host": request.client.host if request.client else None,
    }


@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next):
    """
    Propaga X-Request-ID (lo genera si falta) a los logs y a la respuesta.
    Las peticiones por encima de SLOW_REQUEST_THRESHOLD_MS salen como WARNING.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start = time.perf_counter()

    request.state.request_id = request_id
    request_id_ctx.set(request_id)

    try:
        response: Response = await call_next(request)
    except Exception:
        request_logger.error(
            "unhandled_exception",
            extra=_request_fields(request, request_id, 500, start),
            exc_info=True,
        )
        raise

    response.headers["X-Request-ID"] = request_id
    fields = _request_fields(request, request_id, response.status_code, start)
    slow = fields["duration_ms"] > settings.SLOW_REQUEST_THRESHOLD_MS
    request_logger.log(logging.WARNING if slow else logging.INFO, "request_completed", extra=fields)

    return response


@app.get("/")
def root():
    return {"message": "Library circulation API running"}


@app.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
