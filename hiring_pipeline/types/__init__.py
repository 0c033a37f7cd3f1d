"""Type definitions for database records."""

# Database record types
from hiring_pipeline.types.database import (
    JobRecordTD,
    StageHistoryRecordTD,
    StageRecordTD,
)

__all__ = [
    "JobRecordTD",
    "StageHistoryRecordTD",
    "StageRecordTD",
]
