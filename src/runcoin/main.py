"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from runcoin.config import Settings, get_settings
from runcoin.database import close_db, create_tables, get_session, init_db
from runcoin.health.router import router as health_router
from runcoin.middleware import setup_middleware
from runcoin.redis_client import close_redis, init_redis
from runcoin.rewards.economy_service import seed_economy_config
from runcoin.rewards.router import router as rewards_router
from runcoin.rewards.seed import seed_achievements

logger = logging.getLogger(__name__)


async def seed_reference_data(settings: Settings) -> None:
    """Seed the economy record and the achievement catalog (both idempotent)."""
    async for db in get_session():
        await seed_economy_config(db, settings)
        await seed_achievements(db)
        break


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    if settings.auto_create_tables:
        await create_tables()

    try:
        await seed_reference_data(settings)
    except SQLAlchemyError:
        logger.warning("Reference data seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RunCoin Reward API",
        description="Coin rewards, levels and achievements for runners",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(rewards_router)

    return app


app = create_app()
