"""
Runtime configuration, read once from the environment at import time.
"""

import os

from werkzeug.security import generate_password_hash

# =============================================================================
# CONFIG
# =============================================================================
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DATA_DIR = os.environ.get("DATA_DIR", os.path.join(BASE_DIR, "data"))
PORT = int(os.environ.get("PORT", 5001))
SECRET_KEY = os.environ.get("SECRET_KEY", "change-me-set-SECRET_KEY-env-var")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Tee sheet integration
TEE_PROVIDER = os.environ.get("TEE_PROVIDER", "mock").lower()
FOREUP_ENABLED = os.environ.get("FOREUP_ENABLED", "true").lower() == "true"

# Checkout quotes
QUOTE_SECRET = os.environ.get("QUOTE_SECRET", "fallback-secret-key")
QUOTE_TTL_MINUTES = int(os.environ.get("QUOTE_TTL_MINUTES", 10))
TAX_RATE = float(os.environ.get("TAX_RATE", "0.16"))
DEFAULT_CURRENCY = "USD"

# Bookings
IDEMPOTENCY_TTL_HOURS = int(os.environ.get("IDEMPOTENCY_TTL_HOURS", 24))
PURGE_INTERVAL_MINUTES = int(os.environ.get("PURGE_INTERVAL_MINUTES", 60))
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "true").lower() == "true"

# Admin
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD")
ADMIN_PASSWORD_HASH = None
if ADMIN_PASSWORD:
    ADMIN_PASSWORD_HASH = generate_password_hash(ADMIN_PASSWORD)
