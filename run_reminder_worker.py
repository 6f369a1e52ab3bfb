"""
Follow-up Reminder Background Worker Runner
Run this as a separate process (with REMINDER_WORKER_ENABLED=false on the API): python run_reminder_worker.py
"""

import asyncio
import logging
import sys

from mechhub.tenancy import get_registry
from mechhub.workers.reminder_worker import run_reminder_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting Follow-up Reminder Background Worker...")
    registry = get_registry()
    try:
        registry.bootstrap()
        asyncio.run(run_reminder_worker(registry))
    except KeyboardInterrupt:
        logger.info("👋 Reminder worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Reminder worker crashed: {e}")
        sys.exit(1)
    finally:
        registry.close_all()
