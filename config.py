import os
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# === Path Settings ===
BASE_DIR = Path(__file__).parent.absolute()
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
MIGRATION_DATA_FILE = Path(os.getenv("MIGRATION_DATA_FILE", "migration_data.csv"))

# Subdirectories of UPLOAD_DIR, one per file store namespace
FACES_SUBDIR = "faces"
EVIDENCE_SUBDIR = "attendance"

# === Database Settings ===
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite+aiosqlite:///{DATA_DIR / 'attendance.db'}")
DB_ECHO = _env_bool("DB_ECHO", False)
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_BUSY_TIMEOUT = float(os.getenv("DB_BUSY_TIMEOUT", "15"))  # seconds SQLite waits on a locked database

# === Recognition & Matching ===
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.5"))  # Minimum confidence for identification
RECOGNITION_ENABLED = _env_bool("RECOGNITION_ENABLED", False)  # False = size-ratio placeholder comparator
EMBEDDING_DTYPE = "float32"
FEATURE_EXTRACTOR = os.getenv("FEATURE_EXTRACTOR", "")  # "package.module:ClassName", required when RECOGNITION_ENABLED

# === Ingestion ===
KEEP_DUPLICATE_EVIDENCE = _env_bool("KEEP_DUPLICATE_EVIDENCE", True)
DEFAULT_IMAGE_EXTENSION = ".jpg"

# === API & Network Settings ===
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
APP_VERSION = os.getenv("APP_VERSION", "2.0.0")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
CLEAR_CONFIRMATION = "yes-clear-all"

# === Logging ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
