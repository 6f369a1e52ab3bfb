import json
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import SystemLog
from ..tenancy import TenantRegistry

logger = logging.getLogger(__name__)


def log_error(
    registry: TenantRegistry,
    slug: Optional[str],
    error: BaseException,
    path: Optional[str] = None,
    method: Optional[str] = None,
    user_id: Optional[int] = None,
) -> None:
    """Persist an unhandled error to the tenant's system_logs, or to a JSON-lines file"""
    message = str(error) or error.__class__.__name__
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    logger.error(f"❌ [{slug or 'system'}] {message}")

    if slug and registry.exists(slug):
        try:
            with registry.session(slug) as db:
                db.add(
                    SystemLog(
                        level="error",
                        message=message,
                        stack_trace=stack,
                        path=path,
                        method=method,
                        user_id=user_id,
                    )
                )
                db.commit()
            return
        except (SQLAlchemyError, ValueError) as db_err:
            logger.critical(f"🚨 Failed to log error to database: {db_err}")

    write_error_file(registry.logs_dir, slug, message, stack, path, method, user_id)


def write_error_file(
    logs_dir: Path,
    slug: Optional[str],
    message: str,
    stack: str,
    path: Optional[str] = None,
    method: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Path:
    logs_dir.mkdir(parents=True, exist_ok=True)
    file_path = logs_dir / (f"error_{slug}.log" if slug else "error_system.log")
    entry = {
        "timestamp": datetime.utcnow().isoformat(),
        "slug": slug,
        "level": "error",
        "message": message,
        "stack": stack,
        "path": path,
        "method": method,
        "userId": user_id,
    }
    with open(file_path, "a", encoding="utf-8") as fh:
        fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return file_path
