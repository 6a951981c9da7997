"""ARQ worker for order housekeeping."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()


async def task_expire_abandoned_checkouts(ctx: dict):
    from services.orders_service.tasks import expire_abandoned_checkouts

    logger.info("Running: expire_abandoned_checkouts")
    await expire_abandoned_checkouts()


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup

    functions = [task_expire_abandoned_checkouts]

    cron_jobs = [
        cron(
            task_expire_abandoned_checkouts,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
