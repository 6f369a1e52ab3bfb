import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Root folder for super.db, tenants/<slug>/db.sqlite and logs/
DATA_DIR = os.getenv("DATA_DIR", str(Path(__file__).resolve().parent.parent / "data"))

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Public site used to build order tracking links
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")

# SMTP Encryption Key (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
SMTP_ENCRYPTION_KEY = os.getenv("SMTP_ENCRYPTION_KEY")

# Workshop created on first boot when the control plane is empty
DEFAULT_WORKSHOP_SLUG = os.getenv("DEFAULT_WORKSHOP_SLUG", "demo")
DEFAULT_WORKSHOP_NAME = os.getenv("DEFAULT_WORKSHOP_NAME", "Taller Demo")

# Reminder worker - sweeps once after startup, then at the top of every hour
REMINDER_WORKER_ENABLED = os.getenv("REMINDER_WORKER_ENABLED", "true").lower() == "true"
REMINDER_STARTUP_DELAY_SECONDS = int(os.getenv("REMINDER_STARTUP_DELAY_SECONDS", "10"))
REMINDER_INTERVAL_SECONDS = int(os.getenv("REMINDER_INTERVAL_SECONDS", "3600"))

# SMTP socket timeout for tenant mail servers
SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "30"))

# CORS - dashboard origins allowed to call the API
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
).split(",")
