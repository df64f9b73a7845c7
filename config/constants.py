"""
Centralized constants for the Voucher Batch Operations engine.
All magic numbers used as defaults across the codebase.
"""

# ===========================================
# BATCH OPERATIONS
# ===========================================
BATCH_DEFAULT_SIZE = 50               # items per chunk
BATCH_MAX_SIZE = 100                  # upper bound accepted at create time
BATCH_DEFAULT_PRIORITY = "medium"     # high | medium | low
BATCH_MAX_RETRIES = 3                 # retry-chain depth per lineage
BATCH_PARALLEL_DEFAULT = True         # parallel vs sequential chunk execution

# ===========================================
# SCHEDULER
# ===========================================
SCHEDULER_MAX_CONCURRENT_OPERATIONS = 3
SCHEDULER_INTERVAL_SECONDS = 1.0      # tick period

# ===========================================
# TIMEOUTS
# ===========================================
ITEM_TIMEOUT_SECONDS = 120.0          # per item handler call
OPERATION_TIMEOUT_SECONDS = 7200      # 2 hours per run
SERVICE_TIMEOUT_SECONDS = 30.0        # httpx timeout for domain services

# ===========================================
# METRICS / ESTIMATES
# ===========================================
DEFAULT_MS_PER_RECORD = 100           # used until the first completion

# ===========================================
# RESULTS / LISTING
# ===========================================
RESULTS_DEFAULT_PAGE_SIZE = 50
RESULTS_MAX_PAGE_SIZE = 100
LIST_DEFAULT_LIMIT = 20
LIST_MAX_LIMIT = 100

# ===========================================
# API / SERVER
# ===========================================
API_READ_RATE_LIMIT = "120/minute"
API_WRITE_RATE_LIMIT = "30/minute"

# ===========================================
# STORAGE
# ===========================================
DATABASE_PATH = 'data/batch_operations.db'

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/batch_operations.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
