# matchsync/config.py
"""Environment-driven settings.

Values are read once at import time after loading a local `.env` file.
"""
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL") or "sqlite:///./matchsync.db"
# SQLAlchemy 2.x doesn't accept 'postgres://'
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))

# shared secret for the admin endpoints; empty disables the check
MATCH_REBUILD_KEY = os.getenv("MATCH_REBUILD_KEY", "")
MATCH_FANOUT_WORKERS = int(os.getenv("MATCH_FANOUT_WORKERS", "8"))

SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"
SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "Asia/Seoul")

MATCH_LIMIT = 20
REBUILD_PAGE_SIZE = 400
SCENARIO_KEEP_PER_USER = 5
PRUNE_BATCH_SIZE = 400
