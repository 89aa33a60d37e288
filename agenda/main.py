from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import date, datetime
from functools import lru_cache
from typing import Any
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware

from agenda.core.config import settings
from agenda.core.exceptions import SchedulingError
from agenda.db.session import SessionLocal, get_db
from agenda.logging_utils import (
    configure_logging,
    get_current_tenant,
    set_tenant_context,
    _request_id_ctx_var,
    _tenant_id_ctx_var,
)
from agenda.metrics import REQUEST_COUNTER, REQUEST_LATENCY
from agenda.services import slot_store
from agenda.services.availability import get_available_slots
from agenda.services.booking_manager import BookingReservationManager
from agenda.services.booking_store import load_service
from agenda.services.provider_config import (
    AvailabilityCache,
    ProviderSnapshot,
    build_availability_cache,
    load_provider_snapshot,
)
from agenda.services.recurring import update_provider_availability
from agenda.services.scheduling import serialize_booking, serialize_slot
from agenda.services.slot_generator import generate_for_provider, regenerate
from agenda.services.time_grid import local_day_bounds

configure_logging()

app = FastAPI(title=settings.app_name, version="0.1.0")

logger = logging.getLogger(__name__)


class SimpleRateLimiter:
    """In-memory rate limiter keyed by IP and tenant."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        self.limit = max(1, limit)
        self.window_seconds = max(1, window_seconds)
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str) -> bool:
        now = time.monotonic()
        async with self._lock:
            count, window_start = self._entries.get(key, (0, now))
            if now - window_start >= self.window_seconds:
                self._entries[key] = (1, now)
                return True
            if count >= self.limit:
                return False
            self._entries[key] = (count + 1, window_start)
            return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populate request and tenant context for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        tenant_hint = request.headers.get("X-Tenant-ID")

        request.state.request_id = request_id
        request_id_token = _request_id_ctx_var.set(request_id)
        tenant_token = _tenant_id_ctx_var.set(tenant_hint)

        try:
            response = await call_next(request)
        finally:
            _request_id_ctx_var.reset(request_id_token)
            _tenant_id_ctx_var.reset(tenant_token)

        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a coarse rate limit per IP and tenant."""

    def __init__(self, app: FastAPI, limiter: SimpleRateLimiter) -> None:  # type: ignore[override]
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        tenant_key = _tenant_id_ctx_var.get() or request.headers.get("X-Tenant-ID")
        tenant_value = tenant_key or "anonymous"
        rate_key = f"{client_host}:{tenant_value}"

        allowed = await self.limiter.allow(rate_key)
        if not allowed:
            logger.warning(
                "rate limit exceeded",
                extra={"client_ip": client_host, "tenant": tenant_value},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Rate limit exceeded"},
            )

        return await call_next(request)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit structured access logs and feed metrics."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start_time = time.perf_counter()
        path = request.scope.get("root_path", "") + request.scope.get("path", request.url.path)
        method = request.method

        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - start_time
            tenant_label = get_current_tenant()
            REQUEST_COUNTER.labels(method=method, path=path, status="500", tenant=tenant_label).inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)
            logger.exception(
                "request failed",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
            raise

        elapsed = time.perf_counter() - start_time
        status_code = response.status_code
        tenant_label = get_current_tenant()

        REQUEST_COUNTER.labels(
            method=method,
            path=path,
            status=str(status_code),
            tenant=tenant_label,
        ).inc()
        REQUEST_LATENCY.labels(method=method, path=path).observe(elapsed)

        logger.info(
            "request completed",
            extra={
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(elapsed * 1000, 2),
            },
        )

        return response


rate_limiter = SimpleRateLimiter(
    settings.rate_limit_requests, settings.rate_limit_window_seconds
)


app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware, limiter=rate_limiter)
app.add_middleware(AccessLogMiddleware)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render domain errors with their stable code."""

    if exc.status_code >= 500:
        logger.error("scheduling request failed", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@lru_cache(maxsize=1)
def get_availability_cache() -> AvailabilityCache:
    """Process-wide provider configuration cache."""

    return build_availability_cache(settings)


def get_booking_manager(
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> BookingReservationManager:
    return BookingReservationManager(
        SessionLocal,
        cache,
        lock_timeout_seconds=settings.booking_lock_timeout_seconds,
    )


class DayWindowIn(BaseModel):
    weekday: int = Field(ge=0, le=6)
    open: str
    close: str


class AvailabilityUpdate(BaseModel):
    windows: list[DayWindowIn]
    slot_interval_minutes: int = Field(default=settings.default_slot_interval_minutes, ge=5, le=120)
    max_advance_days: int = Field(default=settings.default_max_advance_days, ge=1, le=365)
    auto_confirm: bool = False
    timezone: str | None = None


class GenerateRequest(BaseModel):
    horizon_days: int | None = Field(default=None, ge=0, le=365)


class BookingCreate(BaseModel):
    provider_id: UUID
    client_id: UUID
    service_id: UUID
    start_ts: datetime
    idempotency_key: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class BookingCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


def _snapshot(db: Session, cache: AvailabilityCache, provider_id: UUID) -> ProviderSnapshot:
    snapshot = cache.get(provider_id, lambda: load_provider_snapshot(db, provider_id))
    set_tenant_context(snapshot.tenant_id)
    return snapshot


def _booking_response(manager: BookingReservationManager, booking) -> dict[str, Any]:
    snapshot = manager.provider_snapshot(booking.provider_id)
    set_tenant_context(booking.tenant_id)
    return {"booking": serialize_booking(booking, tz=snapshot.tz)}


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint used by infrastructure probes."""

    return {"status": "ok"}


@app.post("/api/v1/providers/{provider_id}/slots/generate")
def generate_slots(
    provider_id: UUID,
    payload: GenerateRequest | None = None,
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    """Materialize FREE slots from today through the requested horizon."""

    snapshot = _snapshot(db, cache, provider_id)
    horizon = payload.horizon_days if payload and payload.horizon_days is not None else None
    report = generate_for_provider(
        db, snapshot, snapshot.max_advance_days if horizon is None else horizon
    )
    return {"report": report.as_dict()}


@app.post("/api/v1/providers/{provider_id}/slots/regenerate")
def regenerate_slots(
    provider_id: UUID,
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    """Drop future FREE slots and rebuild the horizon from current configuration."""

    cache.invalidate(provider_id)
    report = regenerate(db, _snapshot(db, cache, provider_id))
    return {"report": report.as_dict()}


@app.get("/api/v1/providers/{provider_id}/slots")
def list_provider_slots(
    provider_id: UUID,
    on_date: date = Query(alias="date"),
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    """Materialized slots of one local day, whatever their status."""

    snapshot = _snapshot(db, cache, provider_id)
    day_start, day_end = local_day_bounds(on_date, snapshot.tz)
    slots = slot_store.find_by_provider_and_range(db, provider_id, day_start, day_end)
    return {
        "date": on_date.isoformat(),
        "timezone": snapshot.timezone,
        "results": [serialize_slot(slot, tz=snapshot.tz) for slot in slots],
    }


@app.get("/api/v1/providers/{provider_id}/slots/stats")
def get_slot_stats(
    provider_id: UUID,
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    _snapshot(db, cache, provider_id)
    return {"stats": slot_store.slot_stats(db, provider_id).as_dict()}


@app.put("/api/v1/providers/{provider_id}/availability")
def put_provider_availability(
    provider_id: UUID,
    payload: AvailabilityUpdate,
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    """Replace the weekly availability and regenerate future slots."""

    report = update_provider_availability(
        db,
        provider_id,
        windows=[window.model_dump() for window in payload.windows],
        interval=payload.slot_interval_minutes,
        max_advance_days=payload.max_advance_days,
        auto_confirm=payload.auto_confirm,
        timezone=payload.timezone,
        cache=cache,
    )
    return {"report": report.as_dict()}


@app.get("/api/v1/slots/available")
def search_available_slots(
    provider_id: UUID,
    service_id: UUID,
    on_date: date = Query(alias="date"),
    db: Session = Depends(get_db),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> dict[str, Any]:
    """Return bookable starts for a provider/service on a local date."""

    snapshot = _snapshot(db, cache, provider_id)
    service = load_service(db, provider_id, service_id)
    tz = snapshot.tz
    results = []
    for slot in get_available_slots(db, snapshot, service, on_date):
        item = slot.as_dict(tz)
        item["duration_min"] = service.duration_minutes
        item["price_cents"] = service.price_cents
        results.append(item)

    return {
        "provider_id": str(provider_id),
        "service_id": str(service_id),
        "date": on_date.isoformat(),
        "timezone": snapshot.timezone,
        "results": results,
    }


@app.post("/api/v1/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    manager: BookingReservationManager = Depends(get_booking_manager),
) -> dict[str, Any]:
    """Create a booking; naive start times are read in the provider's timezone."""

    start = payload.start_ts
    if start.tzinfo is None:
        start = start.replace(tzinfo=manager.provider_snapshot(payload.provider_id).tz)

    booking = manager.create_booking(
        payload.provider_id,
        payload.client_id,
        payload.service_id,
        start,
        idempotency_key=payload.idempotency_key or idempotency_key,
        notes=payload.notes,
    )
    return _booking_response(manager, booking)


@app.get("/api/v1/bookings/{booking_id}")
def get_booking(
    booking_id: UUID,
    manager: BookingReservationManager = Depends(get_booking_manager),
) -> dict[str, Any]:
    return _booking_response(manager, manager.get_booking(booking_id))


@app.post("/api/v1/bookings/{booking_id}/confirm")
def confirm_booking(
    booking_id: UUID,
    manager: BookingReservationManager = Depends(get_booking_manager),
) -> dict[str, Any]:
    return _booking_response(manager, manager.confirm_booking(booking_id))


@app.post("/api/v1/bookings/{booking_id}/cancel")
def cancel_booking(
    booking_id: UUID,
    payload: BookingCancel | None = None,
    manager: BookingReservationManager = Depends(get_booking_manager),
) -> dict[str, Any]:
    reason = payload.reason if payload else None
    return _booking_response(manager, manager.cancel_booking(booking_id, reason=reason))


@app.post("/api/v1/bookings/{booking_id}/complete")
def complete_booking(
    booking_id: UUID,
    manager: BookingReservationManager = Depends(get_booking_manager),
) -> dict[str, Any]:
    return _booking_response(manager, manager.complete_booking(booking_id))
