import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from meatbox.config import settings
from meatbox.database import get_engine
from meatbox.infrastructure.db_schema import metadata
from meatbox.presentation.api import router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    # Схема в проде накатывается Alembic, create_all для локального запуска
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Таблицы созданы")
    except Exception as e:
        logger.info(f"Таблицы не созданы: {e}")

    yield

    await get_engine().dispose()
    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Meatbox Status Service",
    description="Статусы коробок групповых закупок и заказов покупателей",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "healthy"}
