import asyncio
import logging
import re
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import config
from .models_super import GlobalSetting, Workshop
from .routes.clients import router as clients_router
from .routes.logs import router as logs_router
from .routes.orders import router as orders_router
from .routes.public_order import router as public_order_router
from .routes.reminders import router as reminders_router
from .routes.reports import router as reports_router
from .routes.roles import router as roles_router
from .routes.services import router as services_router
from .routes.stock import router as stock_router
from .routes.super import router as super_router
from .routes.suppliers import router as suppliers_router
from .routes.templates import router as templates_router
from .routes.users import router as users_router
from .routes.vehicles import router as vehicles_router
from .routes.workshop_config import router as workshop_config_router
from .services.error_log import log_error
from .tenancy import get_registry, get_super_db
from .workers.reminder_worker import run_reminder_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

TENANT_PATH = re.compile(r"^/api/([^/]+)/")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    registry = get_registry()
    registry.bootstrap()
    logger.info(f"Tenants ready: {', '.join(registry.list_slugs()) or 'none'}")

    worker_task = None
    if config.REMINDER_WORKER_ENABLED:
        worker_task = asyncio.create_task(run_reminder_worker(registry))
        logger.info("⏰ Reminder worker scheduled")

    yield

    logger.info("Application shutting down...")
    if worker_task:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    registry.close_all()


app = FastAPI(title="MechHub API", version="1.0.0", lifespan=lifespan)


def tenant_slug_from_path(path: str):
    match = TENANT_PATH.match(path)
    if not match or match.group(1) == "super":
        return None
    return match.group(1)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Persist the error against the workshop in the path and answer with a plain 500"""
    registry = request.app.dependency_overrides.get(get_registry, get_registry)()
    log_error(
        registry,
        tenant_slug_from_path(request.url.path),
        exc,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(super_router)
app.include_router(public_order_router)
app.include_router(clients_router)
app.include_router(vehicles_router)
app.include_router(orders_router)
app.include_router(reminders_router)
app.include_router(templates_router)
app.include_router(services_router)
app.include_router(suppliers_router)
app.include_router(stock_router)
app.include_router(reports_router)
app.include_router(workshop_config_router)
app.include_router(users_router)
app.include_router(roles_router)
app.include_router(logs_router)


@app.get("/")
def root():
    return {"message": "MechHub API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/api/info")
def info(super_db: Session = Depends(get_super_db)):
    """Public settings and the list of active workshops"""
    settings = {s.key: s.value for s in super_db.query(GlobalSetting).all()}
    workshops = super_db.query(Workshop).filter(Workshop.status == "active").order_by(Workshop.name.asc()).all()
    return {
        "settings": settings,
        "workshops": [{"slug": w.slug, "name": w.name, "logo_path": w.logo_path} for w in workshops],
    }
