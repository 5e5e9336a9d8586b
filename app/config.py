import os


class Config:
    # Storage
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./parking.db")

    # Day-boundary arithmetic for fees always runs in the facility's zone
    FACILITY_TIMEZONE = os.getenv("FACILITY_TIMEZONE", "Asia/Bangkok")

    # Per-day rate cache
    RATE_SETTING_KEY = "fee"
    RATE_CACHE_TTL_SECONDS = int(os.getenv("RATE_CACHE_TTL_SECONDS", "3600"))

    # Payment gateway
    CURRENCY = os.getenv("CURRENCY", "thb")
    PAYMENT_METHOD_TYPES = ["promptpay"]
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # Notification bot
    BOT_BASE_URL = os.getenv("BOT_BASE_URL")
    APP_SECRET = os.getenv("APP_SECRET", "")
    BOT_TIMEOUT_SECONDS = float(os.getenv("BOT_TIMEOUT_SECONDS", "10"))

    # Sweep schedules (cron, facility time). The scheduler itself lives outside.
    WARNING_SCHEDULE = os.getenv("WARNING_SCHEDULE", "0 20 * * *")
    RECALCULATE_SCHEDULE = os.getenv("RECALCULATE_SCHEDULE", "0 5 * * *")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
