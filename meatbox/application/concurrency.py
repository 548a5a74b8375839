import asyncio
import logging

from meatbox.domain.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


async def run_with_retry(operation, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Выполняет транзакцию с повтором при конфликте compare-and-set.

    operation: корутинная функция без аргументов; каждая попытка заново
    читает документ и заново валидирует переход.
    """
    attempts = max(attempts, 1)
    for attempt in range(attempts):
        try:
            return await operation()
        except ConcurrentModificationError as e:
            if attempt >= attempts - 1:
                raise
            logger.warning(f"Конфликт записи ({e}), попытка {attempt + 1}/{attempts}")
            await asyncio.sleep(backoff_base * (2 ** attempt))
