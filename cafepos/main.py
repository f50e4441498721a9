from fastapi import FastAPI

from .core.config import settings
from .core.logging import configure_logging
from .db import init_db
from .middleware.idempotency import install_idempotency
from .routers import health, orders, shift, tables

configure_logging()

# create missing tables (development)
init_db()

app = FastAPI(title=settings.app_name, version=settings.app_version)

install_idempotency(app)
app.include_router(health.router)
app.include_router(orders.router)
app.include_router(shift.router)
app.include_router(tables.router)
