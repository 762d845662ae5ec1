"""Scheduler package: state machine, storage, executor and history ledger.

The import scheduler keeps its state in a single document (Redis-backed in
production) and is driven either by the in-process APScheduler tick or by an
external cron ping.
"""

from .executor import (
    DownloadExecutor,
    MemorySeenIndex,
    RedisSeenIndex,
    SeenIndex,
    YtDlpDownloadExecutor,
)
from .facade import SchedulerHolder
from .history import HistoryLedger, MemoryHistoryLedger, RedisHistoryLedger
from .service import ImportScheduler
from .storage import MemoryStateStore, RedisStateStore, StateStore
from .ticker import SchedulerTicker

__all__ = [
    "DownloadExecutor",
    "HistoryLedger",
    "ImportScheduler",
    "MemoryHistoryLedger",
    "MemorySeenIndex",
    "MemoryStateStore",
    "RedisHistoryLedger",
    "RedisSeenIndex",
    "RedisStateStore",
    "SchedulerHolder",
    "SchedulerTicker",
    "SeenIndex",
    "StateStore",
    "YtDlpDownloadExecutor",
]
