import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agendabot.db")
REDIS_URL = os.getenv("REDIS_URL")

# WhatsApp Cloud API (Messaging Gateway)
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID")
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN")
WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN")
# App secret used for X-Hub-Signature-256; verification is skipped when unset
WHATSAPP_APP_SECRET = os.getenv("WHATSAPP_APP_SECRET")

# Google Calendar (Calendar Service)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REFRESH_TOKEN = os.getenv("GOOGLE_REFRESH_TOKEN")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")

# Asaas (Payment Gateway)
ASAAS_API_URL = os.getenv("ASAAS_API_URL", "https://sandbox.asaas.com/api/v3")
ASAAS_API_KEY = os.getenv("ASAAS_API_KEY")
ASAAS_WEBHOOK_TOKEN = os.getenv("ASAAS_WEBHOOK_TOKEN")

# Admin surface - CRITICAL: No default token in production
ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN")
if not ADMIN_API_TOKEN:
    import warnings

    warnings.warn(
        "ADMIN_API_TOKEN not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    ADMIN_API_TOKEN = "INSECURE-DEV-TOKEN-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Business settings
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Consultório")
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo")
DEFAULT_PRICE = float(os.getenv("DEFAULT_PRICE", "200.00"))
DEFAULT_SLOT_DURATION = int(os.getenv("DEFAULT_SLOT_DURATION", "50"))  # minutes
DEFAULT_SLOT_GAP = int(os.getenv("DEFAULT_SLOT_GAP", "10"))  # minutes
INVOICE_DUE_DAYS = int(os.getenv("INVOICE_DUE_DAYS", "3"))
MAX_LISTED_APPOINTMENTS = int(os.getenv("MAX_LISTED_APPOINTMENTS", "5"))

# Reminders
REMINDER_24H_ENABLED = os.getenv("REMINDER_24H_ENABLED", "true").lower() == "true"
REMINDER_2H_ENABLED = os.getenv("REMINDER_2H_ENABLED", "true").lower() == "true"

# Idempotency ledger retries
EVENT_MAX_RETRIES = int(os.getenv("EVENT_MAX_RETRIES", "5"))
EVENT_RETRY_AFTER_SECONDS = int(os.getenv("EVENT_RETRY_AFTER_SECONDS", "60"))
# How long one attempt holds an event before another worker may take it over
EVENT_CLAIM_TIMEOUT_SECONDS = int(os.getenv("EVENT_CLAIM_TIMEOUT_SECONDS", "300"))

# Timeout applied to every remote call (seconds)
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "10.0"))
