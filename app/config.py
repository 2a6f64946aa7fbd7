import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

# PostgreSQL per-statement timeout so no store call blocks indefinitely
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "10000"))

# Scheduling rules
# Minimum lead time between "now" and a same-day slot start
SAME_DAY_LEAD_MINUTES = int(os.getenv("SAME_DAY_LEAD_MINUTES", "30"))
# Used for queue wait estimates only; advisory
AVERAGE_CONSULTATION_MINUTES = int(os.getenv("AVERAGE_CONSULTATION_MINUTES", "15"))

# Bounded retry for booking/token races lost to another writer
BOOKING_MAX_ATTEMPTS = int(os.getenv("BOOKING_MAX_ATTEMPTS", "3"))
# How long a request may wait for the per-slot / per-day lock
SLOT_LOCK_TIMEOUT_SECONDS = float(os.getenv("SLOT_LOCK_TIMEOUT_SECONDS", "10"))

# Public booking rate limiting (per client IP)
PUBLIC_BOOKING_RATE_LIMIT = int(os.getenv("PUBLIC_BOOKING_RATE_LIMIT", "10"))
PUBLIC_BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("PUBLIC_BOOKING_RATE_WINDOW_SECONDS", "60"))

DEFAULT_CONFIRMATION_MESSAGE = (
    "Your appointment has been booked successfully. We look forward to seeing you!"
)
