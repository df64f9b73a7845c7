#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from pydantic_settings import BaseSettings

from .constants import (
    BATCH_DEFAULT_SIZE,
    BATCH_MAX_SIZE,
    BATCH_DEFAULT_PRIORITY,
    BATCH_MAX_RETRIES,
    SCHEDULER_MAX_CONCURRENT_OPERATIONS,
    SCHEDULER_INTERVAL_SECONDS,
    ITEM_TIMEOUT_SECONDS,
    OPERATION_TIMEOUT_SECONDS,
    SERVICE_TIMEOUT_SECONDS,
    DEFAULT_MS_PER_RECORD,
    API_READ_RATE_LIMIT,
    API_WRITE_RATE_LIMIT,
    DATABASE_PATH,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # ========== Scheduler ==========
    max_concurrent_operations: int = SCHEDULER_MAX_CONCURRENT_OPERATIONS
    scheduler_interval_seconds: float = SCHEDULER_INTERVAL_SECONDS

    # ========== Operation defaults ==========
    default_batch_size: int = BATCH_DEFAULT_SIZE
    max_batch_size: int = BATCH_MAX_SIZE
    default_priority: str = BATCH_DEFAULT_PRIORITY  # high | medium | low
    default_max_retries: int = BATCH_MAX_RETRIES

    # ========== Timeouts ==========
    # 0 disables the corresponding limit
    item_timeout_seconds: float = ITEM_TIMEOUT_SECONDS
    operation_timeout_seconds: float = OPERATION_TIMEOUT_SECONDS

    # ========== Metrics ==========
    default_ms_per_record: float = DEFAULT_MS_PER_RECORD

    # ========== Storage ==========
    store_backend: str = "sqlite"  # sqlite | memory
    database_path: Path = BASE_DIR / DATABASE_PATH

    # ========== Domain services ==========
    voucher_service_url: str = "http://localhost:5001"
    merchant_service_url: str = "http://localhost:5002"
    notification_service_url: str = "http://localhost:5003"
    service_timeout_seconds: float = SERVICE_TIMEOUT_SECONDS

    # ========== API ==========
    read_rate_limit: str = API_READ_RATE_LIMIT
    write_rate_limit: str = API_WRITE_RATE_LIMIT
    allowed_origins: list = ["http://localhost:3000"]
    rate_limit_enabled: bool = True

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.store_backend == "sqlite":
            self.database_path.parent.mkdir(exist_ok=True, parents=True)

    def timeout_or_none(self, value: float):
        """Map a 0/negative timeout setting to None (no limit)."""
        return value if value and value > 0 else None

    def print_config(self):
        """Print configuration summary"""
        print("\n" + "=" * 70)
        print("CONFIGURATION")
        print("=" * 70)
        print(f"Max concurrent:  {self.max_concurrent_operations}")
        print(f"Tick interval:   {self.scheduler_interval_seconds}s")
        print(f"Batch size:      {self.default_batch_size} (max {self.max_batch_size})")
        print(f"Priority:        {self.default_priority}")
        print(f"Item timeout:    {self.item_timeout_seconds}s")
        print(f"Run timeout:     {self.operation_timeout_seconds}s")
        print(f"Store:           {self.store_backend} ({self.database_path})")
        print("=" * 70 + "\n")


# Global settings instance
settings = Settings()
