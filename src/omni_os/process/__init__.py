"""Process lifecycle — records, the process table, and observers."""

from omni_os.process.pcb import (
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    CrashInfo,
    Process,
    ProcessMetadata,
    ProcessStatus,
    ProcessType,
)
from omni_os.process.table import ProcessEvent, ProcessHandler, ProcessStats, ProcessTable

__all__ = [
    "DEFAULT_PRIORITY",
    "MAX_PRIORITY",
    "MIN_PRIORITY",
    "CrashInfo",
    "Process",
    "ProcessEvent",
    "ProcessHandler",
    "ProcessMetadata",
    "ProcessStats",
    "ProcessStatus",
    "ProcessTable",
    "ProcessType",
]
