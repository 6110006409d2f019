"""Tripdesk API service entrypoint."""

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.routers.booking import router as booking_router
from services.api.app.routers.bookings import router as bookings_router
from services.api.app.routers.orders import router as orders_router
from services.api.app.services.booking_pipeline import pipelines
from services.api.app.services.confirmation import confirmations
from services.api.app.services.poller import pollers

app = FastAPI(title="Tripdesk API")

app.include_router(orders_router)
app.include_router(booking_router)
app.include_router(bookings_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.on_event("shutdown")
def _shutdown() -> None:
    pollers.stop_all()
    confirmations.clear()
    pipelines.clear()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
