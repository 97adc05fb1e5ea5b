import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/sheetpipe_db")

# Application Metadata
PROJECT_NAME = "Sheetpipe Cell Enrichment Service"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Background Processor Configuration
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", 1)) # Processor checks for new events every N seconds
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 10)) # How many events to claim per run
HANDLER_TIMEOUT = float(os.getenv("HANDLER_TIMEOUT", 30)) # Upper bound for a single enrichment call
PROCESSOR_AUTOSTART = os.getenv("PROCESSOR_AUTOSTART", "true").lower() in ("1", "true", "yes")

# Retry Policy (bounded exponential backoff)
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 3)) # Total attempts before an event is permanently failed
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", 2))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", 60))
STALE_PROCESSING_SECONDS = int(os.getenv("STALE_PROCESSING_SECONDS", 120))

# Status Stream
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", 100))
STREAM_KEEPALIVE = float(os.getenv("STREAM_KEEPALIVE", 15))
STATUS_SNAPSHOT_LIMIT = int(os.getenv("STATUS_SNAPSHOT_LIMIT", 50))

# Enrichment backend (web search / AI agent)
ENRICHMENT_URL = os.getenv("ENRICHMENT_URL")
ENRICHMENT_API_KEY = os.getenv("ENRICHMENT_API_KEY")
