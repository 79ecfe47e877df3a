"""Background job tasks."""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.domain.ledger.services import LedgerService
from digipay.domain.messaging.services import MessagingService, TradeEventPublisher
from digipay.domain.trades.services import TradeService
from digipay.infra.db.repositories.ledger_repo import LedgerRepositoryImpl
from digipay.infra.db.repositories.message_repo import MessageRepositoryImpl
from digipay.infra.db.repositories.offer_repo import OfferRepositoryImpl
from digipay.infra.db.repositories.trade_repo import TradeRepositoryImpl
from digipay.infra.db.repositories.user_repo import UserRepositoryImpl
from digipay.infra.db.session import get_db
from digipay.infra.jobs.queue import JOBS_QUEUE, JobQueue, job_queue
from digipay.infra.messaging.redis_bus import redis_bus
from digipay.infra.messaging.trade_events import RedisTradeEventPublisher
from digipay.settings import settings

logger = logging.getLogger(__name__)

SWEEP_EXPIRED_TRADES = "sweep_expired_trades"
RECONCILE_SETTLEMENTS = "reconcile_settlements"


def build_trade_service(db: AsyncSession, events: Optional[TradeEventPublisher] = None) -> TradeService:
    """Wire a TradeService (with system messages) on one session."""
    trade_repo = TradeRepositoryImpl(db)
    user_repo = UserRepositoryImpl(db)
    return TradeService(
        trade_repo,
        OfferRepositoryImpl(db),
        user_repo,
        LedgerService(LedgerRepositoryImpl(db), db),
        db,
        messages=MessagingService(MessageRepositoryImpl(db), trade_repo, user_repo, db),
        events=events,
    )


async def process_sweep_expired_trades_job(events: Optional[TradeEventPublisher] = None) -> List[str]:
    """Process sweep expired trades job."""
    async for db in get_db():
        return await build_trade_service(db, events).sweep_expired_trades()
    return []


async def process_reconcile_settlements_job(events: Optional[TradeEventPublisher] = None) -> List[str]:
    """Process reconcile settlements job."""
    async for db in get_db():
        return await build_trade_service(db, events).reconcile_settlements()
    return []


async def handle_job(job: dict, events: Optional[TradeEventPublisher] = None) -> None:
    job_type = job.get("type")
    if job_type == SWEEP_EXPIRED_TRADES:
        await process_sweep_expired_trades_job(events)
    elif job_type == RECONCILE_SETTLEMENTS:
        await process_reconcile_settlements_job(events)
    else:
        logger.warning(f"⚠️ [WORKER] Unknown job type: {job_type}")


async def worker_loop():
    """Worker loop to process jobs."""
    await redis_bus.connect()
    events = RedisTradeEventPublisher(redis_bus)
    logger.info("🔧 [WORKER] Started")
    while True:
        job = await redis_bus.get_job(JOBS_QUEUE)
        if not job:
            continue
        try:
            await handle_job(job, events)
        except Exception as e:
            # One bad job must not stop the worker; the next sweep retries
            logger.error(f"❌ [WORKER] Job {job.get('type')} failed: {e}", exc_info=True)


async def scheduler_loop(queue: JobQueue = job_queue, interval_seconds: Optional[int] = None):
    """Enqueue the periodic sweep and reconcile jobs."""
    interval = interval_seconds or settings.trade_sweep_interval_seconds
    logger.info(f"⏰ [SCHEDULER] Sweeping every {interval}s")
    while True:
        await queue.enqueue(SWEEP_EXPIRED_TRADES, {})
        await queue.enqueue(RECONCILE_SETTLEMENTS, {})
        await asyncio.sleep(interval)
