import os

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./retrohall.db")

# HS256 secret shared with the auth provider that mints user tokens
JWT_SECRET = os.environ.get("JWT_SECRET", "dev-jwt-secret-change-me")
JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", "authenticated")

PAYMENT_BACKEND = os.getenv("PAYMENT_BACKEND", "mock").lower()  # mock|stripe

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/payments/webhook"
)

STRIPE_API_URL = os.environ.get("STRIPE_API_URL", "https://api.stripe.com")
STRIPE_API_KEY = os.environ.get("STRIPE_API_KEY", "")
STRIPE_WEBHOOK_SIGNING_SECRET = os.environ.get(
    "STRIPE_WEBHOOK_SIGNING_SECRET", ""
)
STRIPE_SUCCESS_URL = os.environ.get(
    "STRIPE_SUCCESS_URL", "http://localhost:8000/payments/return"
)
STRIPE_CANCEL_URL = os.environ.get(
    "STRIPE_CANCEL_URL", "http://localhost:8000/payments/return"
)
STRIPE_TOLERANCE_SECONDS = 300

CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "usd")
APP_SCHEME = os.environ.get("APP_SCHEME", "myapp")

EXPO_PUSH_URL = os.environ.get(
    "EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"
)

REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ----------------------------
# Business rules
# ----------------------------
TIME_SLOTS = ["5:00 PM", "6:00 PM", "7:00 PM", "8:00 PM", "9:00 PM"]
MAX_TABLES_PER_SLOT = 6
PARTY_SIZE_MIN = 1
PARTY_SIZE_MAX = 12
TABLE_NUMBER_MIN = 1
TABLE_NUMBER_MAX = 99

DEFAULT_LOW_STOCK_THRESHOLD = 3
DEFAULT_MAX_ATTENDEES = 16
DEFAULT_GAME_TYPE = "TCG"

NOTIFICATION_CHUNK = 500
PUSH_CHUNK = 100  # Expo accepts up to 100 messages per request
BROADCAST_HISTORY_LIMIT = 20

ANALYTICS_RESERVATION_DAYS = 30
ANALYTICS_EVENT_DAYS = 90
ANALYTICS_TOP_SLOTS = 8
ANALYTICS_TOP_EVENTS = 6
