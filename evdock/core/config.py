import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./evdock.db")

# Placeholder for the external dealer API; nothing calls it yet
API_BASE_URL = os.getenv("EVDOCK_API_URL", os.getenv("REACT_NATIVE_API_URL", ""))

# Artificial delay applied to every service call (milliseconds)
SERVICE_LATENCY_MS = int(os.getenv("EVDOCK_SERVICE_LATENCY_MS", "0"))

SEED_DATA = _env_bool("EVDOCK_SEED_DATA", True)
RECONCILE_ON_STARTUP = _env_bool("EVDOCK_RECONCILE_ON_STARTUP", True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
