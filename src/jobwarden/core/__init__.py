"""JobWarden core components."""

from jobwarden.core.archiver import JobArchiver
from jobwarden.core.cleaner import PurgeReport, StorageCleaner
from jobwarden.core.executor import CancelResult, ExecutorClient
from jobwarden.core.invalidator import JobTimeoutInvalidator
from jobwarden.core.locks import StatusLock
from jobwarden.core.store import JobStore, SQLiteJobStore
from jobwarden.core.watchdog import WatchdogScheduler, create_watchdog

__all__ = [
    "CancelResult",
    "ExecutorClient",
    "JobArchiver",
    "JobStore",
    "JobTimeoutInvalidator",
    "PurgeReport",
    "SQLiteJobStore",
    "StatusLock",
    "StorageCleaner",
    "WatchdogScheduler",
    "create_watchdog",
]
