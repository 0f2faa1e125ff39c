import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Application environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = ENVIRONMENT == "development"

# Database settings
DATABASE_URL = os.getenv("DATABASE_URL")

# Stripe settings
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_PROCESSING_FEE_PERCENT_BPS = int(os.getenv("STRIPE_PROCESSING_FEE_PERCENT_BPS", "290"))  # 2.9%
STRIPE_PROCESSING_FEE_FIXED_MINOR = int(os.getenv("STRIPE_PROCESSING_FEE_FIXED_MINOR", "25"))
STRIPE_CONNECT_COUNTRY = os.getenv("STRIPE_CONNECT_COUNTRY", "US").upper()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Application settings
APP_NAME = "Survivor Pool API"
APP_VERSION = "1.0.0"
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5173").rstrip("/")

# Descope settings
DESCOPE_PROJECT_ID = os.getenv("DESCOPE_PROJECT_ID", "")
DESCOPE_JWT_LEEWAY = int(os.getenv("DESCOPE_JWT_LEEWAY", "60"))  # default 60 seconds for JWT clock-skew tolerance
DESCOPE_JWT_LEEWAY_FALLBACK = int(os.getenv("DESCOPE_JWT_LEEWAY_FALLBACK", "120"))

# Service credential used when one orchestration endpoint calls another
SERVICE_ROLE_KEY = os.getenv("SERVICE_ROLE_KEY", "")

# Shared bearer token for the external cron invoker
CRON_TOKEN = os.getenv("CRON_TOKEN", "")

# Where sibling orchestration endpoints are reachable
FUNCTIONS_BASE_URL = os.getenv("FUNCTIONS_BASE_URL", "http://localhost:8000").rstrip("/")
FUNCTION_TIMEOUT_SECONDS = float(os.getenv("FUNCTION_TIMEOUT_SECONDS", "30"))

# Game lifecycle settings
REBUY_WINDOW_HOURS = int(os.getenv("REBUY_WINDOW_HOURS", "24"))
ROUND_REMINDER_LEAD_HOURS = int(os.getenv("ROUND_REMINDER_LEAD_HOURS", "24"))
ROUND_REMINDER_WINDOW_HOURS = int(os.getenv("ROUND_REMINDER_WINDOW_HOURS", "1"))

# Outbound email (Resend)
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "Survivor Pool <no-reply@survivorpool.app>")
