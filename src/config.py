"""Configuration module for GradeJournal.

This module provides centralized configuration management, including directory
paths, local storage slots, sync timing, remote backend settings and export
defaults. All configuration values can be overridden via environment variables.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

APP_VERSION = "6.1.0"

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

DATA_DIR = Path(os.getenv("GRADEJOURNAL_DATA_DIR", str(ROOT_DIR / "data")))

# --- Local Persistence Configuration ---

LOCAL_DATABASE_URL: str = os.getenv(
    "LOCAL_DATABASE_URL", f"sqlite:///{DATA_DIR}/gradejournal.db"
)

# Storage slot keys. Primary and backup always hold identical snapshots;
# the last-user slot keeps a copy taken at sign-out.
LOCAL_STORAGE_KEY: str = "gj_v6_pro"
LOCAL_BACKUP_KEY: str = "gj_v6_pro_backup"
LOCAL_LAST_USER_KEY: str = "gj_v6_pro_last_user"

# --- Sync Configuration ---

SYNC_INTERVAL_SECONDS: float = float(os.getenv("SYNC_INTERVAL_SECONDS", "30"))
SAVE_DEBOUNCE_SECONDS: float = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "0.15"))

# Oldest pending-change markers are evicted past this many entries
PENDING_CHANGES_LIMIT: int = int(os.getenv("PENDING_CHANGES_LIMIT", "50"))

# Max ids per "IN (...)" filter when fetching grades/attendance
REMOTE_BATCH_SIZE: int = int(os.getenv("REMOTE_BATCH_SIZE", "25"))

UNDO_STACK_LIMIT: int = 20

# --- Remote Backend Configuration ---

SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY: Optional[str] = os.getenv("SUPABASE_ANON_KEY")
REMOTE_TIMEOUT_SECONDS: float = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "15"))

# --- Export Configuration ---

DEFAULT_EXPORT_COLOR: Dict[str, int] = {"h": 30, "s": 60, "l": 50, "a": 100}
DEFAULT_INSTITUTION_NAME: str = "GradeJournal"

# Embedded logo data is truncated to this many characters
LOGO_MAX_CHARS: int = 500000
EXPORT_MAX_ROWS: int = 500

IELTS_SECTIONS: List[str] = ["Listening", "Reading", "Writing", "Speaking", "Overall Band"]
OVERALL_BAND_COLUMN: str = "Overall Band"

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "3000"))

_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
