"""FastAPI application wiring for the billing sync service."""
from __future__ import annotations

from fastapi import FastAPI

from .config import get_settings
from .db import init_db
from .log import configure_logging
from .routers import cron

settings = get_settings()

app = FastAPI(
    title="Billing Sync",
    description="Wiederkehrende Rechnungen und Statusabgleich mit Lexoffice.",
    version="0.1.0",
)


@app.on_event("startup")
def startup() -> None:
    configure_logging(settings.log_level, settings.log_format)
    init_db()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(cron.router)
