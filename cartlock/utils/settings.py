# cartlock/utils/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

CART_SERVICE_URL = os.getenv("CART_SERVICE_URL", "http://cart-service:5000/api/v1")
PRICING_SERVICE_URL = os.getenv("PRICING_SERVICE_URL", CART_SERVICE_URL)
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 5))
HTTP_RETRY_ATTEMPTS = int(os.getenv("HTTP_RETRY_ATTEMPTS", 3))
LOCK_TICK_INTERVAL_SECONDS = float(os.getenv("LOCK_TICK_INTERVAL_SECONDS", 1.0))
LOW_TIME_THRESHOLD_SECONDS = int(os.getenv("LOW_TIME_THRESHOLD_SECONDS", 60))
PRICE_LOCK_TTL_SECONDS = int(os.getenv("PRICE_LOCK_TTL_SECONDS", 15*60))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SESSION_IDLE_SECONDS = int(os.getenv("SESSION_IDLE_SECONDS", 30*60))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", 1000))
