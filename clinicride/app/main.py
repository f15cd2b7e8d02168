# app/main.py
import asyncio
import contextlib
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from .api_routes import router as api_router
from .db import close_db, init_db
from .errors import BookingError, ValidationError
from .ws import relay, router as ws_router

logger = logging.getLogger(__name__)

app = FastAPI(title="ClinicRide Booking Service")

app.include_router(api_router)
app.include_router(ws_router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        # loc is ("body", "pickupLat") / ("path", "booking_id"); keep the field part
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        fields.setdefault(".".join(loc) or "body", []).append(err.get("msg", "Invalid value"))
    return JSONResponse(status_code=400, content=ValidationError(fields).to_payload())


@app.on_event("startup")
async def startup():
    await init_db()
    app.state.heartbeat = asyncio.create_task(relay.run_heartbeat())


@app.on_event("shutdown")
async def shutdown():
    heartbeat = getattr(app.state, "heartbeat", None)
    if heartbeat is not None:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat
    await close_db()


@app.get("/")
async def root():
    return {"service": "clinicride-booking", "status": "ok"}
