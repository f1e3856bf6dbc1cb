from .models import (
    Contact,
    EligibleOutlet,
    ExternalReview,
    ManualQueueEntry,
    ManualQueueStatus,
    PendingNotification,
    Review,
    ReviewStatus,
    ReviewWorkflow,
    is_positive_rating,
)
from .workflow import (
    InvalidTransitionError,
    WorkflowError,
    WorkflowNotFoundError,
    can_transition,
    ensure_transition,
    is_reminder_terminal,
)
