from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware

from freightguard.api import events, health, history, roles, users
from freightguard.core.config import settings
from freightguard.core.errors import FreightGuardError
from freightguard.core.logging import api_logger
from freightguard.core.middleware import (
    RequestContextMiddleware,
    freightguard_error_handler,
    http_exception_handler,
)
from freightguard.db.database import async_session, create_tables
from freightguard.permissions.catalog import load_catalog, seed_permissions


async def seed_default_data():
    """Seed the permission table and load the catalog into memory."""
    async with async_session() as db:
        added = await seed_permissions(db)
        catalog = await load_catalog(db)
        api_logger.info("startup_seed_complete", permissions_added=added, catalog_size=len(catalog))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    await seed_default_data()
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Authorization and audit trail service for freight management",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(FreightGuardError, freightguard_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# Include routers
app.include_router(roles.router, prefix="/api", tags=["Roles"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(history.router, prefix="/api/history", tags=["History"])
app.include_router(health.router, prefix="", tags=["Health"])
