"""Constants for the formflow engine"""

# ==================== File Paths ====================
DATABASE_PATH = "data/formflow.db"
LOG_FILE_DEFAULT = "data/formflow.log"

# ==================== Navigation ====================
SUBMIT_SENTINEL = "__submit__"
WALK_CAP_FACTOR = 2  # resolver gives up after this many passes per section

# ==================== Field Types ====================
PRESENTATIONAL_TYPES = frozenset({"label", "image", "link"})

# ==================== Validation Patterns ====================
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
HITAM_EMAIL_SUFFIX = "@hitam.org"
PHONE_MIN_DIGITS = 10
INDIA_PHONE_DIGITS = 10

# Keys containing any of these mark a submission as awaiting payment
PAYMENT_MARKERS = ("payment", "upi")

# ==================== Collections ====================
FORM_SUBMISSIONS_COLLECTION = "forms/{scope_id}/submissions"
ACTIVITY_REGISTRATIONS_COLLECTION = "activities/{scope_id}/registrations"
GLOBAL_REGISTRATIONS_COLLECTION = "allRegistrations"

# Payload keys written by the pipeline; a field slug equal to one is overwritten
RESERVED_PAYLOAD_KEYS = frozenset(
    {
        "form_id",
        "form_title",
        "activity_id",
        "activity_title",
        "submitted_at",
        "files",
        "status",
        "field_mapping",
    }
)

# ==================== Timeouts (seconds) ====================
TIMEOUT_UPLOAD = 60
SUBMITTED_RESET_DELAY = 3

# ==================== Retry Configuration ====================
UPLOAD_MAX_RETRIES = 3
UPLOAD_RETRY_DELAY = 2  # seconds

# ==================== Uploads ====================
CLOUDINARY_UPLOAD_URL = "https://api.cloudinary.com/v1_1/{cloud_name}/auto/upload"
UPLOAD_ROOT_FOLDER = "hitam_ai"
UPLOAD_FALLBACK_PRESETS = ["ml_default", "default", "cloud_default"]

# ==================== Default Registration Form ====================
DEFAULT_REGISTRATION_TITLE = "Registration"
DEFAULT_REGISTRATION_DESCRIPTION = "Please fill in your details"

# ==================== Messages ====================
MSG_SECTION_INCOMPLETE = "Please fill in all required fields in this section before proceeding."
MSG_CHECK_PENDING = "Please wait while we verify your details."
MSG_DUPLICATE_PENDING = "Please correct the highlighted duplicate entries before proceeding."

# ==================== Database Configuration ====================
DB_MAX_CONNECTIONS = 20
DB_STALE_TIMEOUT = 300  # 5 minutes
DB_JOURNAL_MODE = "wal"
DB_SYNCHRONOUS = "NORMAL"
DB_BUSY_TIMEOUT = 5000  # 5 seconds
DB_CACHE_SIZE = -64 * 1000  # 64MB

# ==================== Database Pragmas ====================
DB_PRAGMAS = {
    "journal_mode": DB_JOURNAL_MODE,
    "synchronous": DB_SYNCHRONOUS,
    "busy_timeout": DB_BUSY_TIMEOUT,
    "foreign_keys": 1,
    "cache_size": DB_CACHE_SIZE,
}
