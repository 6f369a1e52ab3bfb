"""
Follow-up Reminder Background Worker
Sweeps every workshop for due reminders once shortly after startup,
then at the top of every interval (hourly by default)
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .. import config
from ..services.reminders import sweep_all_tenants
from ..tenancy import TenantRegistry, get_registry

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, interval_seconds: Optional[int] = None) -> float:
    """Seconds until the next multiple of the interval (the top of the hour for 3600)"""
    interval = interval_seconds or config.REMINDER_INTERVAL_SECONDS
    remainder = (now.minute * 60 + now.second + now.microsecond / 1_000_000) % interval
    return interval - remainder


async def run_reminder_sweep(registry: TenantRegistry) -> list[dict]:
    """One sweep over all tenants, run off the event loop (SMTP and SQLite block)"""
    logger.info("🔄 Processing follow-up reminders...")
    summaries = await asyncio.to_thread(sweep_all_tenants, registry)

    sent = sum(s["sent"] for s in summaries)
    skipped = sum(s["skipped"] for s in summaries)
    failed = sum(s["failed"] for s in summaries)
    logger.info(f"✅ Reminder sweep done: {len(summaries)} workshops, {sent} sent, {skipped} skipped, {failed} failed")
    return summaries


async def run_reminder_worker(registry: Optional[TenantRegistry] = None):
    """
    Main worker loop
    """
    registry = registry or get_registry()
    logger.info("🚀 Starting reminder worker...")

    await asyncio.sleep(config.REMINDER_STARTUP_DELAY_SECONDS)

    while True:
        try:
            await run_reminder_sweep(registry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Error in reminder worker loop: {e}")

        await asyncio.sleep(seconds_until_next_run(datetime.utcnow()))
