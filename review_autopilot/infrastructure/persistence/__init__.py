from .database import Database, init_database, utc_now
from .review_store import ReviewNotFoundError, ReviewStore
from .manual_queue import ManualQueueStore, QueueEntryNotFoundError
from .workflow_store import WorkflowStore
from .outlet_store import OutletStore

__all__ = [
    "Database",
    "ManualQueueStore",
    "OutletStore",
    "QueueEntryNotFoundError",
    "ReviewNotFoundError",
    "ReviewStore",
    "WorkflowStore",
    "init_database",
    "utc_now",
]
