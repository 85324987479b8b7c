"""
Runtime configuration for the KPL Food Coop Market backend.

Values come from the process environment (a local .env is loaded first):
  - SUPABASE_URL / SUPABASE_SERVICE_KEY / SUPABASE_ANON_KEY for the hosted backend
  - GOOGLE_API_KEY for the Gemini sales auditor (optional)
  - GOOGLE_SHEETS_WEBHOOK_URL for the legacy spreadsheet sync (optional)
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ------------------------
# Supabase
# ------------------------
SUPABASE_URL = (os.environ.get("SUPABASE_URL") or "").rstrip("/")  # https://<project>.supabase.co
SUPABASE_REST = SUPABASE_URL + "/rest/v1"
SUPABASE_AUTH_URL = SUPABASE_URL + "/auth/v1"
SUPABASE_STORAGE_URL = SUPABASE_URL + "/storage/v1"
SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")  # service_role
ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")

NEWS_IMAGE_BUCKET = os.environ.get("NEWS_IMAGE_BUCKET", "news-images")

# ------------------------
# AI sales auditor
# ------------------------
GOOGLE_API_KEY = os.environ.get("GOOGLE_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")

# ------------------------
# Legacy Google Sheets sync
# ------------------------
GOOGLE_SHEETS_WEBHOOK_URL = os.environ.get("GOOGLE_SHEETS_WEBHOOK_URL", "").strip()
SYNC_ENABLED = _env_flag("SYNC_ENABLED")
SYNC_POLLING_INTERVAL = int(os.environ.get("SYNC_POLLING_INTERVAL", 30))  # seconds
SHEETS_TIMEOUT = float(os.environ.get("SHEETS_TIMEOUT", 15))

# ------------------------
# Weather advisory
# ------------------------
WEATHER_API_URL = os.environ.get("WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast")
WEATHER_CACHE_TTL = int(os.environ.get("WEATHER_CACHE_TTL", 86400))  # seconds
WEATHER_TIMEOUT = float(os.environ.get("WEATHER_TIMEOUT", 8))

# ------------------------
# Portal
# ------------------------
SITE_URL = os.environ.get("SITE_URL", "http://localhost:5000").rstrip("/")
# Phones that always resolve to the System Developer role (bootstrap accounts)
SYSTEM_DEVELOPER_PHONES = [
    p.strip() for p in os.environ.get("SYSTEM_DEVELOPER_PHONES", "").split(",") if p.strip()
]
DEFAULT_CLUSTER = os.environ.get("DEFAULT_CLUSTER", "Mariwa")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", 5000))
