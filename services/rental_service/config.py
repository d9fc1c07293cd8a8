import os
from zoneinfo import ZoneInfo

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rental_service.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Booking dates are compared against "today" in this zone
BUSINESS_TIMEZONE = ZoneInfo(os.getenv("BUSINESS_TIMEZONE", "Africa/Casablanca"))

FLEET_STATUS_CACHE_TTL = float(os.getenv("FLEET_STATUS_CACHE_TTL", "30"))

SERVICE_HOST = os.getenv("RENTAL_SERVICE_HOST", "0.0.0.0")
SERVICE_PORT = int(os.getenv("RENTAL_SERVICE_PORT", "8060"))
