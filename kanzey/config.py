import os

# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./kanzey.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
# defaults to the pool size when unset
DB_GATE_LIMIT = os.getenv("DB_GATE_LIMIT")

# ----------------------------
# URLs
# ----------------------------
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:5000")
QR_CODE_BASE_URL = os.getenv(
    "QR_CODE_BASE_URL", f"{FRONTEND_URL}/verify-ticket"
)

# ----------------------------
# InTouch payment provider
# ----------------------------
INTOUCH_REDIRECT_URL = os.getenv(
    "INTOUCH_REDIRECT_URL", "https://pay.intouch.example/checkout"
)
# empty -> the return path cannot re-query and only renders "processing"
INTOUCH_STATUS_URL = os.getenv("INTOUCH_STATUS_URL", "")
INTOUCH_MERCHANT_ID = os.getenv("INTOUCH_MERCHANT_ID", "kanzey-dev")
INTOUCH_SECRET_KEY = os.getenv("INTOUCH_SECRET_KEY", "dev-secret-change-me")
# empty -> webhook signatures are not checked (development only)
INTOUCH_WEBHOOK_SECRET = os.getenv("INTOUCH_WEBHOOK_SECRET", "")
INTOUCH_SERVICE_CODE = os.getenv(
    "INTOUCH_SERVICE_CODE", "PAIEMENTMARCHANDOMQRCODE"
)
CURRENCY = "FCFA"
PAYMENT_METHOD = "intouch"

# ----------------------------
# Business rules
# ----------------------------
MAX_TICKETS_PER_ORDER = int(os.getenv("MAX_TICKETS_PER_ORDER", "10"))
PENDING_TTL_SECONDS = int(os.getenv("PENDING_TTL_SECONDS", str(30 * 60)))

# ----------------------------
# Notifications
# ----------------------------
# empty -> notifications are only logged
NOTIFY_URL = os.getenv("NOTIFY_URL", "")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "5.0"))

# ----------------------------
# Webhook delivery log
# ----------------------------
WEBHOOK_LOG_BACKEND = os.getenv("WEBHOOK_LOG_BACKEND", "sql").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.getenv("REDIS_MAX_CONN", "64"))
WEBHOOK_KEY_TTL_SECONDS = int(
    os.getenv("WEBHOOK_KEY_TTL_SECONDS", str(24 * 3600))
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
