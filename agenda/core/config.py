import os


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]


NOTIFICATIONS_ENABLED = _get_bool(os.getenv("NOTIFICATIONS_ENABLED"), default=True)
# Simulated mode never reaches the gateway; ids are generated locally.
NOTIFICATIONS_SIMULATED = _get_bool(os.getenv("NOTIFICATIONS_SIMULATED"), default=APP_ENV != "production")

NOTIFICATION_PACING_MIN_SECONDS = _get_float(os.getenv("NOTIFICATION_PACING_MIN_SECONDS"), 0.0)
NOTIFICATION_PACING_MAX_SECONDS = _get_float(os.getenv("NOTIFICATION_PACING_MAX_SECONDS"), 0.0)
NOTIFICATION_SEND_TIMEOUT_SECONDS = _get_float(os.getenv("NOTIFICATION_SEND_TIMEOUT_SECONDS"), 10.0)
NOTIFICATION_QUEUE_MAXSIZE = int(os.getenv("NOTIFICATION_QUEUE_MAXSIZE", "500"))
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3"))

EVOLUTION_API_URL = os.getenv("EVOLUTION_API_URL", "http://localhost:8080")
EVOLUTION_API_KEY = os.getenv("EVOLUTION_API_KEY", "")
EVOLUTION_INSTANCE = os.getenv("EVOLUTION_INSTANCE", "agenda")
PHONE_COUNTRY_CODE = os.getenv("PHONE_COUNTRY_CODE", "55")
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "R$")

REMINDER_24H_LEAD_MIN_MINUTES = int(os.getenv("REMINDER_24H_LEAD_MIN_MINUTES", str(23 * 60)))
REMINDER_24H_LEAD_MAX_MINUTES = int(os.getenv("REMINDER_24H_LEAD_MAX_MINUTES", str(25 * 60)))
REMINDER_2H_LEAD_MIN_MINUTES = int(os.getenv("REMINDER_2H_LEAD_MIN_MINUTES", "120"))
REMINDER_2H_LEAD_MAX_MINUTES = int(os.getenv("REMINDER_2H_LEAD_MAX_MINUTES", "180"))

REMINDER_ALLOWED_START_HOUR = int(os.getenv("REMINDER_ALLOWED_START_HOUR", "6"))
REMINDER_ALLOWED_END_HOUR = int(os.getenv("REMINDER_ALLOWED_END_HOUR", "23"))


def pacing_bounds() -> tuple[float, float] | None:
    if NOTIFICATION_PACING_MAX_SECONDS <= 0:
        return None
    low = max(0.0, NOTIFICATION_PACING_MIN_SECONDS)
    return low, max(low, NOTIFICATION_PACING_MAX_SECONDS)


def validate_runtime_config() -> None:
    if NOTIFICATION_MAX_ATTEMPTS < 1:
        raise RuntimeError("NOTIFICATION_MAX_ATTEMPTS must be >= 1.")
    if NOTIFICATION_PACING_MIN_SECONDS > NOTIFICATION_PACING_MAX_SECONDS > 0:
        raise RuntimeError("NOTIFICATION_PACING_MIN_SECONDS must not exceed NOTIFICATION_PACING_MAX_SECONDS.")
    if (
        APP_ENV.lower() == "production"
        and NOTIFICATIONS_ENABLED
        and not NOTIFICATIONS_SIMULATED
        and not EVOLUTION_API_KEY
    ):
        raise RuntimeError("EVOLUTION_API_KEY must be set in production.")
