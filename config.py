from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv()

BASE_DIR = Path(__file__).parent

# Data directory (gitignored)
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR}/planner.db")
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# API
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8081").split(",") if o.strip()
]
# Used to build action_url links in notifications
FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:8081")

# Period generation defaults (applied when the caller sends <= 0)
DEFAULT_MIN_DAYS: int = int(os.getenv("DEFAULT_MIN_DAYS", "1"))
DEFAULT_MIN_AVAILABILITY_MEMBER: int = int(os.getenv("DEFAULT_MIN_AVAILABILITY_MEMBER", "1"))
# true → generating on a trip with no accepted members is an error instead of an empty result
REJECT_EMPTY_MEMBERSHIP: bool = os.getenv("REJECT_EMPTY_MEMBERSHIP", "false").lower() in {"1", "true", "yes"}

# Transactions
TX_MAX_RETRIES: int = int(os.getenv("TX_MAX_RETRIES", "3"))
TX_RETRY_BACKOFF_SECONDS: float = float(os.getenv("TX_RETRY_BACKOFF_SECONDS", "0.05"))
STATEMENT_TIMEOUT_MS: int = int(os.getenv("STATEMENT_TIMEOUT_MS", "5000"))

# Notifications (fire-and-forget)
NOTIFY_MAX_ATTEMPTS: int = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "2"))
NOTIFY_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))
NOTIFY_BACKOFF_SECONDS: float = float(os.getenv("NOTIFY_BACKOFF_SECONDS", "0.1"))
NOTIFY_WEBHOOK_URL: str = os.getenv("NOTIFY_WEBHOOK_URL", "")  # optional mirror of every notification
