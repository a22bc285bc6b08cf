import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as courtbook.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "courtbook.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity is issued upstream; the gateway forwards it in these headers
    IDENTITY_HEADER = os.getenv("IDENTITY_HEADER", "X-User-Id")
    ROLES_HEADER = os.getenv("ROLES_HEADER", "X-User-Roles")

    # Time grid (fixed 30-minute slots)
    SLOT_MINUTES = 30

    # Pending reservation lock lifetime: 10 minutes
    LOCK_TTL_SECONDS = int(os.getenv("LOCK_TTL_SECONDS", "600"))

    # Free slots are shown as filling_fast below this free/open ratio (0 disables)
    FILLING_FAST_THRESHOLD = float(os.getenv("FILLING_FAST_THRESHOLD", "0.2"))

    # Retry policies
    PAYMENT_MAX_ATTEMPTS = int(os.getenv("PAYMENT_MAX_ATTEMPTS", "3"))
    PAYMENT_RETRY_BACKOFF_SECONDS = float(os.getenv("PAYMENT_RETRY_BACKOFF_SECONDS", "1.0"))
    RESERVE_MAX_ATTEMPTS = int(os.getenv("RESERVE_MAX_ATTEMPTS", "3"))
    RESERVE_RETRY_BACKOFF_SECONDS = float(os.getenv("RESERVE_RETRY_BACKOFF_SECONDS", "0.1"))

    #Cancellation policy
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "24"))

    # Payments
    CURRENCY = os.getenv("CURRENCY", "INR")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

    # Email (SMTP) for booking notifications
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    NOTIFY_EMAIL = os.getenv("NOTIFY_EMAIL")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    PAYMENT_RETRY_BACKOFF_SECONDS = 0.0
    RESERVE_RETRY_BACKOFF_SECONDS = 0.0
    STRIPE_SECRET_KEY = None
    SMTP_HOST = None
