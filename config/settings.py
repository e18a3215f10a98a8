"""
Central Configuration File

ALL configuration values live here. This is the single source of truth.

Guidelines:
- Secrets (API keys, credentials) should be in .env, NOT here
- Import these settings in modules: from config.settings import MAX_QUEUE_SIZE
- Every queue constant can be overridden from the environment (or .env)
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# QUEUE CONFIGURATION
# =============================================================================

# Global number of simultaneous uploads across ALL owners on the device.
# 1 = strictly serial uploads (protects mobile radio and battery)
MAX_CONCURRENT_UPLOADS = int(os.getenv("UPLOAD_MAX_CONCURRENT", "1"))

# Per-owner queue bound. Oldest terminal task is evicted beyond this.
MAX_QUEUE_SIZE = int(os.getenv("UPLOAD_MAX_QUEUE_SIZE", "50"))

# Largest accepted source file (bytes)
MAX_FILE_SIZE_BYTES = int(
    os.getenv("UPLOAD_MAX_FILE_SIZE_BYTES", str(100 * 1024 * 1024)),
)  # 100 MB

# Scheduler periodic tick (seconds). State changes wake it immediately.
SCHEDULER_TICK_SECONDS = float(os.getenv("UPLOAD_SCHEDULER_TICK_SECONDS", "5.0"))

# Per-attempt upload timeout (seconds). Exceeding it counts as a network failure.
UPLOAD_TIMEOUT_SECONDS = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "600"))

# Succeeded tasks stay visible this long before being archived to history
SUCCEEDED_RETENTION_SECONDS = float(
    os.getenv("UPLOAD_SUCCEEDED_RETENTION_SECONDS", str(24 * 3600)),
)

# Number of succeeded uploads kept in the per-owner history
MAX_COMPLETED_HISTORY = int(os.getenv("UPLOAD_MAX_COMPLETED_HISTORY", "50"))

# =============================================================================
# RETRY CONFIGURATION
# =============================================================================

# Automatic retries after the first attempt (3 attempts total by default)
MAX_UPLOAD_RETRIES = int(os.getenv("UPLOAD_MAX_RETRIES", "2"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("UPLOAD_RETRY_BASE_DELAY", "2.0"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("UPLOAD_RETRY_MAX_DELAY", "60.0"))
RETRY_JITTER_RATIO = float(os.getenv("UPLOAD_RETRY_JITTER", "0.2"))  # +/- 20%

# =============================================================================
# PROGRESS CONFIGURATION
# =============================================================================

PROGRESS_MIN_DELTA = float(os.getenv("UPLOAD_PROGRESS_MIN_DELTA", "0.05"))  # 5%
PROGRESS_MIN_INTERVAL_SECONDS = float(
    os.getenv("UPLOAD_PROGRESS_MIN_INTERVAL", "0.25"),
)  # 250 ms

# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

# Directory used by the file-backed key-value store
QUEUE_STORE_PATH = Path(os.getenv("UPLOAD_QUEUE_STORE_PATH", "./upload_queue_data"))

# Key prefix for every record written by the queue
QUEUE_KEY_PREFIX = os.getenv("UPLOAD_QUEUE_KEY_PREFIX", "upload_queue")

# Optional YAML overrides for the values above
QUEUE_CONFIG_FILE = os.getenv("UPLOAD_QUEUE_CONFIG_FILE", "")

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

LOG_LEVEL = os.getenv("UPLOAD_LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("UPLOAD_LOG_DIR", "")  # empty = console only
LOG_QUEUE_FILE = "upload_queue.log"
LOG_BACKUP_COUNT = 7  # days of rotated logs kept
