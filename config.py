"""
config.py — SubTrack settings

All values come from the environment (a local .env file is loaded first),
so secrets and paths never live in code.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


# ── Storage ───────────────────────────────────────────────────────────────────
DATA_DIR = Path(os.getenv("SUBTRACK_DATA_DIR", "data"))

# ── Auth ──────────────────────────────────────────────────────────────────────
ACCESS_TOKEN_TTL_MINUTES = _int("ACCESS_TOKEN_TTL_MINUTES", 60)
REFRESH_TOKEN_TTL_DAYS   = _int("REFRESH_TOKEN_TTL_DAYS", 30)
BCRYPT_ROUNDS            = _int("BCRYPT_ROUNDS", 12)
MIN_PASSWORD_LENGTH      = 6

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://localhost:5174,http://localhost:5175,*",
    ).split(",")
    if o.strip()
]

# ── Scan quota ────────────────────────────────────────────────────────────────
FREE_DAILY_SCANS    = _int("FREE_DAILY_SCANS", 1)
PREMIUM_DAILY_SCANS = _int("PREMIUM_DAILY_SCANS", 5)

# ── Due dates & aggregation ───────────────────────────────────────────────────
DUE_SOON_DAYS        = _int("DUE_SOON_DAYS", 3)
UPCOMING_WINDOW_DAYS = _int("UPCOMING_WINDOW_DAYS", 7)
UPCOMING_VIEW_DAYS   = _int("UPCOMING_VIEW_DAYS", 30)
UPCOMING_VIEW_LIMIT  = _int("UPCOMING_VIEW_LIMIT", 5)
# Weekly → monthly normalisation. Product has not settled this; 52/12 by default.
WEEKS_PER_MONTH      = _float("WEEKS_PER_MONTH", 52 / 12)

# ── Upgrade ───────────────────────────────────────────────────────────────────
CHECKOUT_URL = os.getenv("CHECKOUT_URL", "https://checkout.stripe.com/mock-session")
PLAN_TYPES   = ("monthly", "yearly")

# ── Client / UI ───────────────────────────────────────────────────────────────
API_URL = os.getenv("SUBTRACK_API_URL", "http://localhost:8000").rstrip("/")

# ── Scheduler ─────────────────────────────────────────────────────────────────
REMINDER_TIME    = os.getenv("REMINDER_TIME", "09:00")
QUOTA_RESET_TIME = os.getenv("QUOTA_RESET_TIME", "00:00")
RUN_SCHEDULER    = os.getenv("SUBTRACK_SCHEDULER", "1").strip().lower() not in ("0", "false", "no")

LOG_LEVEL  = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
