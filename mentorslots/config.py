import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mentorslots.db")

# Identity provider - tokens are issued elsewhere and signed with this shared key
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# All visibility computations run in this civil timezone, never the host's
CIVIL_TIMEZONE = os.getenv("CIVIL_TIMEZONE", "Asia/Seoul")

# Ticket ledger
MAX_TICKETS = 10
WEEKLY_TICKET_COUNT = int(os.getenv("WEEKLY_TICKET_COUNT", "10"))

# Slot generation defaults
DEFAULT_INTERVAL_MINUTES = 10
DEFAULT_AM_START = os.getenv("DEFAULT_AM_START", "10:00")
DEFAULT_AM_END = os.getenv("DEFAULT_AM_END", "15:50")
DEFAULT_PM_START = os.getenv("DEFAULT_PM_START", "16:00")
DEFAULT_PM_END = os.getenv("DEFAULT_PM_END", "21:50")
SLOT_CAPACITY = 1
MAX_BREAKS_PER_DAY = 8

# Reservation fairness rules (per student, per day)
MAX_DAILY_RESERVATIONS = int(os.getenv("MAX_DAILY_RESERVATIONS", "3"))
MAX_TEACHER_DAILY_RESERVATIONS = int(os.getenv("MAX_TEACHER_DAILY_RESERVATIONS", "2"))

# Publication scheduling
QUEUE_STEP_MINUTES = 10
DEFAULT_PREVIEW_LEAD_TIME = 24  # expressed in DEFAULT_PREVIEW_LEAD_UNIT
DEFAULT_PREVIEW_LEAD_UNIT = "hours"

# Teaching period start times (block 1..10)
BLOCK_START_TIMES = [
    "09:00",
    "09:50",
    "10:50",
    "11:40",
    "13:30",
    "14:20",
    "15:20",
    "16:10",
    "17:10",
    "18:00",
]

# Auto-publish sweep
AUTO_PUBLISH_INTERVAL_MINUTES = int(os.getenv("AUTO_PUBLISH_INTERVAL_MINUTES", "5"))
AUTO_PUBLISH_MAX_BATCH = int(os.getenv("AUTO_PUBLISH_MAX_BATCH", "50"))
AUTO_PUBLISH_ENABLED_ENVIRONMENTS = os.getenv(
    "AUTO_PUBLISH_ENABLED_ENVIRONMENTS", "production,development"
).split(",")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
